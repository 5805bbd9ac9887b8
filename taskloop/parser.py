"""Extract checklist tasks and acceptance criteria from plan markdown."""

from __future__ import annotations

import re
from typing import List, Optional

from .models import ParsedTask

_HEADING_PATTERN = re.compile(r"^(?P<level>#{1,6})\s+(?P<title>.*?)\s*$")
_TASKS_TITLE_PATTERN = re.compile(r"^tasks\s*:?$", re.IGNORECASE)
_TASK_LINE_PATTERN = re.compile(r"^[-*]\s*\[ \]\s+(?P<rest>.+)$")
_TASK_PREFIX_PATTERN = re.compile(r"^Task\s+\d+\s*:\s*", re.IGNORECASE)
_AC_LINE_PATTERN = re.compile(r"^\s*[-*]\s*AC:\s*(?P<criterion>.+)$")


def parse_tasks(plan_content: str) -> List[ParsedTask]:
    """Parse unchecked top-level checklist items with their ``AC:`` lines.

    Only the first ``Tasks`` section is scanned when one exists; otherwise
    the whole document is. Indented and checked boxes are ignored.
    """
    if not plan_content or not plan_content.strip():
        return []

    section = _extract_tasks_section(plan_content)
    lines = section if section is not None else plan_content.splitlines()

    tasks: List[ParsedTask] = []
    for idx, line in enumerate(lines):
        match = _TASK_LINE_PATTERN.match(line)
        if not match:
            continue

        description = _TASK_PREFIX_PATTERN.sub("", match.group("rest").strip(), count=1).strip()
        if not description:
            continue

        tasks.append(ParsedTask(description=description, acceptance_criteria=_collect_criteria(lines, idx + 1)))

    return tasks


def parse_task_descriptions(plan_content: str) -> List[str]:
    return [task.description for task in parse_tasks(plan_content)]


def _collect_criteria(lines: List[str], start: int) -> List[str]:
    criteria: List[str] = []
    for line in lines[start:]:
        ac_match = _AC_LINE_PATTERN.match(line)
        if ac_match:
            criteria.append(ac_match.group("criterion").strip())
        elif not line.strip():
            continue
        else:
            # next checkbox or any other content ends the block
            break
    return criteria


def _extract_tasks_section(content: str) -> Optional[List[str]]:
    """Lines of the first ``Tasks`` section, or ``None`` when there is none."""
    section: Optional[List[str]] = None
    section_level = 0

    for line in content.splitlines():
        heading = _HEADING_PATTERN.match(line)
        if section is None:
            if heading and _TASKS_TITLE_PATTERN.match(heading.group("title")):
                section = []
                section_level = len(heading.group("level"))
            continue

        if heading and len(heading.group("level")) <= section_level:
            break
        section.append(line)

    return section
