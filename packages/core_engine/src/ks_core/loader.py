import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


def load_yaml_project(path: str) -> Dict[str, Any]:
    project_path = Path(path)
    if not project_path.exists():
        raise FileNotFoundError(f"Project file not found: {path}")

    with project_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ValueError("Project YAML must parse to an object/map at root.")

    return data


def parse_run_results(data: Any) -> Dict[str, str]:
    """Turn run results into a ``{test_id: status}`` map.

    Accepts dbt's ``run_results.json`` shape (``results[].unique_id``) or a
    flat mapping of test id to status. For dbt unique ids
    (``test.<package>.<name>.<hash>``) the bare test name is indexed too.
    """
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError("Run results must parse to an object/map at root.")

    statuses: Dict[str, str] = {}
    results = data.get("results")
    if isinstance(results, list):
        for result in results:
            if not isinstance(result, dict):
                continue
            unique_id = str(result.get("unique_id", "")).strip()
            if not unique_id:
                continue
            status = str(result.get("status", "")).strip().lower()
            statuses[unique_id] = status
            parts = unique_id.split(".")
            if len(parts) >= 3 and parts[0] == "test":
                statuses.setdefault(parts[2], status)
        return statuses

    for key, value in data.items():
        statuses[str(key)] = str(value).strip().lower()
    return statuses


def load_run_results(path: Optional[str]) -> Dict[str, str]:
    if not path:
        return {}
    results_path = Path(path)
    if not results_path.exists():
        raise FileNotFoundError(f"Run results file not found: {path}")

    with results_path.open("r", encoding="utf-8") as handle:
        if results_path.suffix.lower() == ".json":
            data = json.load(handle)
        else:
            data = yaml.safe_load(handle)

    return parse_run_results(data)
