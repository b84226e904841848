"""Dataclass to save measurement results to a CSV file."""
from __future__ import annotations

import csv
from dataclasses import dataclass
from pathlib import Path


@dataclass
class ResultsFile:
    """Writes one row per measured signal pair to a CSV file.

    Attributes:
        file_name (str | Path): The name of the file to write results to.
        header_columns (list[str]): The columns of the CSV file.
        append_results (bool): Append to an existing file instead of creating
            a new one with a header row. Defaults to False.
        precision (int): Number of decimals for float values. Defaults to 6.
    """

    file_name: str | Path
    header_columns: list[str]
    append_results: bool = False
    precision: int = 6

    def __post_init__(self):
        self.file_name = Path(self.file_name)

        if self.append_results:
            if not self.file_name.exists():
                raise FileNotFoundError(
                    "Cannot append results to non-existent file "
                    f"{self.file_name.as_posix()}"
                    " - please set append_results=False"
                )
        else:
            with open(self.file_name, "w", encoding="utf-8", newline="") as csv_file:
                csv.writer(csv_file).writerow(self.header_columns)

    def add_result(self, row_values: dict[str, str | float]):
        """Add a row; every header column must be present in `row_values`."""
        missing = [column for column in self.header_columns if column not in row_values]
        if missing:
            raise KeyError(f"Missing values for columns {missing}")

        row = [
            f"{value:.{self.precision}f}" if isinstance(value, float) else value
            for value in (row_values[column] for column in self.header_columns)
        ]
        with open(self.file_name, "a", encoding="utf-8", newline="") as csv_file:
            csv.writer(csv_file).writerow(row)
