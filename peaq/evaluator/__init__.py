from peaq.evaluator.distortion_index import (
    calculate_di_advanced,
    calculate_di_basic,
    calculate_odg,
)
from peaq.evaluator.fft_ear_model import FFTEarModel
from peaq.evaluator.filterbank_ear_model import FilterbankEarModel
from peaq.evaluator.level_adapter import LevelAdapter
from peaq.evaluator.modulation_processor import ModulationProcessor
from peaq.evaluator.mov_accumulator import AccumulatorMode, MovAccumulator
from peaq.evaluator.movs import EhsSettings
from peaq.evaluator.peaq import (
    PeaqAdvanced,
    PeaqAlgorithm,
    PeaqBasic,
    compute_peaq,
    make_peaq,
)

__all__ = [
    "AccumulatorMode",
    "EhsSettings",
    "FFTEarModel",
    "FilterbankEarModel",
    "LevelAdapter",
    "ModulationProcessor",
    "MovAccumulator",
    "PeaqAdvanced",
    "PeaqAlgorithm",
    "PeaqBasic",
    "calculate_di_advanced",
    "calculate_di_basic",
    "calculate_odg",
    "compute_peaq",
    "make_peaq",
]
