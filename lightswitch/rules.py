"""
Rule table persistence and the in-memory rule store.

The rule file maps executable paths to actions:

{
    "/usr/bin/game": {
        "SwitchToProfile": {"profile_name": "gaming"}
    },
    "/bin/foo": {
        "SwitchToSlot": {"slot_index": 2}
    }
}
"""

import json
import os
import tempfile
from pathlib import Path
from typing import Any

from lightswitch.core import Action, RuleParseError, SwitchToProfile, SwitchToSlot
from lightswitch.deadlock import TrackedLock
from lightswitch.logging_config import get_logger

logger = get_logger(__name__)

RuleTable = dict[str, Action]


def decode_action(data: Any) -> Action:
    """
    Decode a single tagged action record.

    Raises:
        RuleParseError: If the record is not a valid action
    """
    if not isinstance(data, dict) or len(data) != 1:
        raise RuleParseError(f"Expected an object with exactly one action tag, got {data!r}")

    tag, fields = next(iter(data.items()))
    if not isinstance(fields, dict):
        raise RuleParseError(f"Fields of action '{tag}' must be an object, got {fields!r}")

    if tag == "SwitchToProfile":
        profile_name = fields.get("profile_name")
        if not isinstance(profile_name, str) or set(fields) != {"profile_name"}:
            raise RuleParseError(f"Invalid SwitchToProfile fields: {fields!r}")
        return SwitchToProfile(profile_name=profile_name)

    if tag == "SwitchToSlot":
        slot_index = fields.get("slot_index")
        if set(fields) != {"slot_index"}:
            raise RuleParseError(f"Invalid SwitchToSlot fields: {fields!r}")
        try:
            return SwitchToSlot(slot_index=slot_index)  # type: ignore[arg-type]
        except (TypeError, ValueError) as e:
            raise RuleParseError(f"Invalid SwitchToSlot fields: {e}") from e

    raise RuleParseError(f"Unknown action: {tag}")


def encode_action(action: Action) -> dict[str, Any]:
    """Encode an action as a tagged record."""
    if isinstance(action, SwitchToProfile):
        return {"SwitchToProfile": {"profile_name": action.profile_name}}
    return {"SwitchToSlot": {"slot_index": action.slot_index}}


def decode_rules(text: str) -> RuleTable:
    """
    Decode a rule table from its JSON text.

    Raises:
        RuleParseError: If the text is not a valid rule table
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RuleParseError(f"Rule file is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise RuleParseError("Rule file must contain an object mapping paths to actions")

    return {exe_file: decode_action(action) for exe_file, action in data.items()}


def encode_rules(table: RuleTable) -> str:
    """Encode a rule table as pretty-printed JSON text."""
    data = {exe_file: encode_action(action) for exe_file, action in table.items()}
    return json.dumps(data, indent=2, sort_keys=True) + "\n"


def load_rules(path: str | Path) -> RuleTable:
    """
    Load a rule table from disk.

    Args:
        path: Path to the rule file

    Returns:
        The decoded rule table

    Raises:
        OSError: If the file is missing or unreadable
        RuleParseError: If the file content is not a valid rule table
    """
    text = Path(path).read_text(encoding='utf-8')
    return decode_rules(text)


def save_rules(path: str | Path, table: RuleTable) -> None:
    """
    Write the whole rule table to disk, replacing the destination file.

    Args:
        path: Path to the rule file
        table: The table to write

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    text = encode_rules(table)

    # Write next to the destination and rename, so readers never see a partial file
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            f.write(text)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class RuleStore:
    """
    Rule table shared by the dispatch loop and the admin commands.

    All access goes through one lock. Reloads build the new table first and
    swap it in as a whole, so callers only ever see complete tables.
    """

    def __init__(self, path: str | Path, table: RuleTable | None = None) -> None:
        """
        Initialize the store.

        Args:
            path: Backing rule file
            table: Optional initial table (empty if not given)
        """
        self.path = Path(path)
        self._rules: RuleTable = dict(table or {})
        self._lock = TrackedLock("rules")

    def load(self) -> RuleTable:
        """
        Replace the table with the content of the backing file.

        Returns:
            A copy of the newly loaded table

        Raises:
            OSError: If the file is missing or unreadable
            RuleParseError: If the file content is invalid
        """
        table = load_rules(self.path)
        with self._lock:
            self._rules = table
        logger.debug("Loaded %s rule(s) from %s", len(table), self.path)
        return dict(table)

    def save(self) -> None:
        """Persist the current table to the backing file."""
        table = self.snapshot()
        save_rules(self.path, table)
        logger.debug("Saved %s rule(s) to %s", len(table), self.path)

    def get(self, exe_file: str) -> Action | None:
        """Look up the action for an executable path."""
        with self._lock:
            return self._rules.get(exe_file)

    def upsert(self, exe_file: str, action: Action) -> None:
        """Add a rule, replacing any existing rule for the same path."""
        with self._lock:
            self._rules[exe_file] = action

    def remove(self, index: int) -> tuple[str, Action]:
        """
        Remove the rule at a position of the sorted listing.

        Args:
            index: Position as shown by items()

        Returns:
            The removed (path, action) pair

        Raises:
            IndexError: If index is out of range
        """
        with self._lock:
            entries = sorted(self._rules.items())
            if index < 0 or index >= len(entries):
                raise IndexError(f"No rule at index {index}")
            exe_file, action = entries[index]
            del self._rules[exe_file]
        return exe_file, action

    def snapshot(self) -> RuleTable:
        """Return a consistent copy of the whole table."""
        with self._lock:
            return dict(self._rules)

    def items(self) -> list[tuple[str, Action]]:
        """Return all rules sorted by executable path."""
        return sorted(self.snapshot().items())

    def __len__(self) -> int:
        with self._lock:
            return len(self._rules)
