
"""
lofai - an endless generative lo-fi piece, played over MIDI.

The engine picks a key and an eight-chord progression, improvises a melody
over it with a biased random walk, and rolls a loose probabilistic drum
groove under it.  Every few dozen bars a section ends: key, progression,
melody density and which voices sit out are all drawn again, and a filter
sweep marks the change.  Everything runs on one pulse clock, so chords,
melody and drums never drift apart.

What it does:

- **Harmony.** Major and minor keys, diatonic seventh chords, progressions
  drawn from a weighted degree-transition table, voicings of any size.
- **Melody.** A scale-step random walk that favours small moves over leaps
  and never leaves the scale.
- **Drums.** Kick, snare and hat templates; each slot fires with its own
  probability, bent by "emphasis" and "activity" parameters.
- **Form.** Sections of 16 to 48 bars with per-cycle and per-section
  voice dropouts.
- **Personalization.** Four arms (tempo, energy, danceability, valence)
  retune tempo, swing, density, velocity, drum eligibility and key mode
  while playing, without restarting.
- **Control.** A state subscription API, OSC control and broadcasting,
  and a command line player that can also render straight to a MIDI file.

Minimal example:

    ```python
    import asyncio
    import random

    import lofai

    engine = lofai.Engine(rng=random.Random(42))
    engine.apply_generation_params(lofai.GenerationParams("70-80", "medium", "groovy", "sad"))
    engine.render(bars=32, filename="lofi.mid")
    ```

Package-level exports: ``Engine``, ``EngineState``, ``GenerationParams``, ``load_config``.
"""

import lofai.config
import lofai.engine
import lofai.params


Engine = lofai.engine.Engine
EngineState = lofai.engine.EngineState
GenerationParams = lofai.params.GenerationParams
load_config = lofai.config.load_config
