"""Measure reference/test pairs of audio files with PEAQ."""
from __future__ import annotations

# pylint: disable=import-error
import json
import logging
from pathlib import Path

import hydra
from omegaconf import DictConfig

from peaq.evaluator.peaq import PEAQ_VERSIONS, compute_peaq
from peaq.utils.file_io import read_signal_pair
from peaq.utils.results_support import ResultsFile

logger = logging.getLogger(__name__)


def make_pair_list(config: DictConfig) -> list[dict[str, str]]:
    """The file pairs to measure, from the pairs file or the single pair."""
    if config.path.pairs_file:
        with open(config.path.pairs_file, encoding="utf-8") as fp:
            pairs = json.load(fp)
        for pair in pairs:
            if "reference" not in pair or "test" not in pair:
                raise ValueError(
                    f"Entry {pair} of {config.path.pairs_file} needs a "
                    "'reference' and a 'test' file"
                )
            pair.setdefault("name", Path(pair["test"]).stem)
        return pairs
    return [
        {
            "name": Path(config.path.test).stem,
            "reference": config.path.reference,
            "test": config.path.test,
        }
    ]


def evaluate_pair(
    reference_file: str | Path,
    test_file: str | Path,
    version: str = "basic",
    playback_level: float = 92.0,
    block_size: int = 4096,
) -> tuple[float, float, dict[str, float]]:
    """Read a pair of files and return ODG, DI and the MOVs."""
    reference, test = read_signal_pair(reference_file, test_file)
    return compute_peaq(
        reference,
        test,
        version=version,
        playback_level=playback_level,
        block_size=block_size,
    )


def format_report(odg: float, di: float, movs: dict[str, float] | None = None) -> str:
    """Console report, optionally listing the MOVs first."""
    lines = []
    if movs is not None:
        lines.extend(f"{name}: {value:f}" for name, value in movs.items())
    lines.append(f"Objective Difference Grade: {odg:.3f}")
    lines.append(f"Distortion Index: {di:.3f}")
    return "\n".join(lines)


@hydra.main(config_path="", config_name="config")
def run_evaluate(config: DictConfig) -> None:
    """Measure all configured file pairs and store the scores."""
    version = config.peaq.version
    if version not in PEAQ_VERSIONS:
        raise ValueError(f"Unknown PEAQ version {version}")

    pairs = make_pair_list(config)
    logger.info(f"Measuring {len(pairs)} pairs with the {version} version")

    results_file = None
    if config.evaluate.results_file:
        # column order follows the MOV order of the selected version
        results_file = ResultsFile(
            file_name=config.evaluate.results_file,
            header_columns=["name", "odg", "di", *PEAQ_VERSIONS[version].MOV_MODES],
        )

    for pair in pairs:
        logger.info(f"Measuring {pair['test']} against {pair['reference']}")
        odg, di, movs = evaluate_pair(
            pair["reference"],
            pair["test"],
            version=version,
            playback_level=config.peaq.playback_level,
            block_size=config.peaq.block_size,
        )
        print(format_report(odg, di, movs if config.evaluate.show_movs else None))
        if results_file is not None:
            results_file.add_result({"name": pair["name"], "odg": odg, "di": di, **movs})

    logger.info("Done")


# pylint: disable = no-value-for-parameter
if __name__ == "__main__":
    run_evaluate()
