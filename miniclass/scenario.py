"""
Scenario loading for JSON-defined classrooms.

A scenario is a roster of student personas plus an opening topic. Keeping
rosters in JSON lets teachers build practice classes without writing Python.

Scenario file structure:
```json
{
  "name": "Period 3 Algebra",
  "topic": "Linear equations",
  "students": [
    {
      "id": "maya",
      "persona": {
        "identity": {"name": "Maya Chen", "age": 14},
        "personality": {"extraversion": 0.8},
        "communication_style": {"willingness_to_speak_up": 0.7}
      }
    }
  ]
}
```

Usage:
    loader = ScenarioLoader()
    topic, personas = loader.load("algebra_period3")
    session = await classroom.start(personas, topic=topic)
"""

import json
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from .config import Config
from .schemas import Persona


class ScenarioLoader:
    """Load and validate classroom scenarios from JSON files.

    Directory structure:
    - Default: Config.SCENARIOS_DIR ({PROJECT_ROOT}/examples/scenarios/)
    - Override via constructor: ScenarioLoader(Path("/custom/scenarios"))
    - Scenario files: {scenario_name}.json

    Validation:
    - ``students`` is required and must be a non-empty list
    - Each student needs a unique, non-empty ``id`` and a ``persona`` block
    - Raises ValueError if validation fails
    """

    def __init__(self, scenarios_dir: Optional[Path] = None):
        self.scenarios_dir = Path(scenarios_dir) if scenarios_dir else Config.SCENARIOS_DIR

    def load(self, scenario_name: str) -> Tuple[str, Dict[str, Persona]]:
        """Load a scenario by name.

        Args:
            scenario_name: File name without the .json extension

        Returns:
            Tuple of (topic, ordered mapping of student id -> Persona)

        Raises:
            FileNotFoundError: If the scenario file doesn't exist
            ValueError: If the scenario is malformed
        """
        scenario_path = self.scenarios_dir / f"{scenario_name}.json"
        if not scenario_path.exists():
            raise FileNotFoundError(
                f"Scenario '{scenario_name}' not found at {scenario_path}"
            )
        return load_classroom(scenario_path)


def load_classroom(path: Path | str) -> Tuple[str, Dict[str, Persona]]:
    """Load a classroom roster from an explicit JSON path."""
    scenario_path = Path(path)
    try:
        data = json.loads(scenario_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Scenario file {scenario_path} is not valid JSON: {exc}") from exc
    return parse_classroom(data)


def parse_classroom(data: Any) -> Tuple[str, Dict[str, Persona]]:
    if not isinstance(data, dict):
        raise ValueError("Scenario must be a JSON object")

    students = data.get("students")
    if not isinstance(students, list) or not students:
        raise ValueError("Scenario must have at least one student")

    topic = data.get("topic") or ""
    if not isinstance(topic, str):
        raise ValueError("Scenario 'topic' must be a string")

    personas: Dict[str, Persona] = {}
    for index, entry in enumerate(students):
        if not isinstance(entry, dict) or "id" not in entry or "persona" not in entry:
            raise ValueError(
                f"Student entry {index} must include 'id' and 'persona' blocks"
            )
        student_id = entry["id"]
        if not isinstance(student_id, str) or not student_id.strip():
            raise ValueError(f"Student entry {index} has an empty id")
        if student_id in personas:
            raise ValueError(f"Duplicate student id '{student_id}' in scenario")
        try:
            personas[student_id] = Persona.model_validate(entry["persona"])
        except ValidationError as exc:
            raise ValueError(f"Invalid persona for student '{student_id}': {exc}") from exc

    return topic.strip(), personas
