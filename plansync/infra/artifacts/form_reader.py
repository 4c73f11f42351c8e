from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from plansync.usecases.plan_form import PlanFormState

YAML_SUFFIXES = (".yml", ".yaml")


def _load_form_raw(path: str) -> Any:
    p = Path(path)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in YAML_SUFFIXES:
        return yaml.safe_load(text)
    return json.loads(text)


def readFormFile(path: str) -> PlanFormState:
    """
    Назначение:
        Читает состояние формы плана из JSON или YAML файла.

    Входные данные:
        path: str
            Путь к файлу формы (.json, .yml, .yaml).

    Выходные данные:
        PlanFormState

    Ошибки:
        - FileNotFoundError, если файла нет;
        - ValueError при невалидном JSON/YAML или если корень не объект.
    """
    try:
        data = _load_form_raw(path)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ValueError(f"Invalid form file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("Invalid form format: root must be object")
    return PlanFormState.from_mapping(data)


__all__ = ["readFormFile"]
