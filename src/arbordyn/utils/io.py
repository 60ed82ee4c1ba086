# src/arbordyn/utils/io.py
import logging
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

logger = logging.getLogger(__name__)


def save_simulation_history(history: List[Dict[str, Any]], filepath: str | Path) -> Path:
    """
    Saves a list of per-step records to a CSV file.

    Array-valued entries are expanded into one column per component,
    e.g. ``force`` of length 2 becomes ``force_0`` and ``force_1``.

    Args:
        history: List of dicts, e.g., [{'t': 0.1, 'q': array([...])}, ...]
        filepath: Destination path (e.g., 'results/run1.csv')

    Returns:
        The path that was written.
    """
    if not history:
        raise ValueError("Simulation history is empty. Nothing to save.")

    rows = []
    for record in history:
        row: Dict[str, Any] = {}
        for key, value in record.items():
            if hasattr(value, "__len__") and not isinstance(value, str):
                for i, component in enumerate(value):
                    row[f"{key}_{i}"] = float(component)
            else:
                row[key] = value
        rows.append(row)

    path = Path(filepath)
    # Ensure the directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    df = pd.DataFrame(rows)
    df.to_csv(path, index=False)
    logger.info("Simulation history saved to %s", path.absolute())
    return path
