"""Shared test fixtures for ctxpack."""

from __future__ import annotations

from pathlib import Path

import pytest

from ctxpack.context.models import ContextProfile, ProfileEntry, TaskDescriptor, TaskType, Tier


def sized(head: str, tokens: int, filler: str) -> str:
    """Text of exactly `tokens` estimated tokens that starts with `head`."""
    chars = tokens * 4
    text = head
    while len(text) < chars:
        text += filler
    return text[:chars]


@pytest.fixture
def tmp_project(tmp_path: Path) -> Path:
    """Create a temporary project directory with a small multi-type codebase."""
    # Main module
    (tmp_path / "main.py").write_text('''"""Main application entry point."""

from utils import helper_function, calculate_total
from models import User, Order


def main():
    """Run the main application."""
    user = User("Alice", "alice@example.com")
    order = Order(user, items=["widget", "gadget"])
    total = calculate_total(order.items)
    result = helper_function(total)
    print(f"Order total: {result}")
    return result


if __name__ == "__main__":
    main()
''')

    # Utils module
    (tmp_path / "utils.py").write_text('''"""Utility functions."""

TAX_RATE = 0.08


def helper_function(value):
    """Apply formatting to a value."""
    return f"${value:.2f}"


def calculate_total(items):
    """Calculate total price for a list of items."""
    prices = {"widget": 9.99, "gadget": 24.99, "doohickey": 4.99}
    subtotal = sum(prices.get(item, 0) for item in items)
    tax = subtotal * TAX_RATE
    return subtotal + tax


def validate_email(email):
    """Validate an email address."""
    import re
    pattern = r"^[a-zA-Z0-9_.+-]+@[a-zA-Z0-9-]+\\.[a-zA-Z0-9-.]+$"
    return bool(re.match(pattern, email))
''')

    # Models module
    (tmp_path / "models.py").write_text('''"""Data models."""


class User:
    """Represents a user in the system."""

    def __init__(self, name: str, email: str):
        self.name = name
        self.email = email

    def is_valid(self):
        """Check if user data is valid."""
        from utils import validate_email
        return bool(self.name) and validate_email(self.email)


class Order:
    """Represents an order."""

    def __init__(self, user: User, items: list):
        self.user = user
        self.items = items

    def get_total(self):
        """Get the order total."""
        from utils import calculate_total
        return calculate_total(self.items)
''')

    api_dir = tmp_path / "api"
    api_dir.mkdir()
    (api_dir / "__init__.py").write_text('"""API package."""\n')
    (api_dir / "routes.py").write_text('''"""API routes."""

from models import User, Order


def get_user(user_id):
    """Get a user by ID."""
    return User("Test User", "test@example.com")


def create_order(user_id, items):
    """Create a new order."""
    order = Order(get_user(user_id), items)
    return {"total": order.get_total()}
''')

    tests_dir = tmp_path / "tests"
    tests_dir.mkdir()
    (tests_dir / "test_utils.py").write_text('''from utils import calculate_total


def test_calculate_total():
    assert calculate_total([]) == 0
''')

    (tmp_path / "README.md").write_text(
        "# Shop\n\nA tiny order processing demo. See [utils](utils.py).\n\n## Usage\n\nRun main.py.\n"
    )
    (tmp_path / "config.yaml").write_text("debug: false\ntax_rate: 0.08\n")

    return tmp_path


@pytest.fixture
def scenario_listing() -> dict[str, str]:
    """Virtual listing: an entry point, the helper it imports, and unrelated notes."""
    entry = sized(
        '"""Process entry point."""\n\nfrom util.helper import format_value\n\n\n'
        "def run(value):\n    return format_value(value)\n\n",
        500,
        "    result = format_value(result)\n",
    )
    helper = sized(
        '"""Formatting helpers."""\n\n\n'
        'def format_value(value):\n    """Format a value for display."""\n    return str(value)\n\n\n'
        'def pad_value(value, width):\n    """Pad a value to a width."""\n    return str(value).rjust(width)\n\n\n'
        "def _accumulate(values):\n    total = 0\n",
        300,
        "    total = total + 1\n",
    )
    notes = sized("# Meeting log\n\n", 1000, "lorem ipsum dolor sit amet\n")
    return {"core/entry.py": entry, "util/helper.py": helper, "notes.md": notes}


def make_profile(features: dict[str, dict[str, float]], task: str = "some task") -> ContextProfile:
    """A profile with one high-tier entry per path carrying the given features."""
    entries = tuple(
        ProfileEntry(
            path=path,
            kind="source",
            tier=Tier.HIGH,
            relevance_score=0.5,
            features=feats,
            size=10,
            full_size=10,
        )
        for path, feats in features.items()
    )
    return ContextProfile(
        task=TaskDescriptor(text=task, task_type=TaskType.GENERAL),
        entries=entries,
        total_size=10 * len(entries),
        budget=1000,
    )
