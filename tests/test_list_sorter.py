"""
Tests for src/list_sorter.py: priority and German collation ordering.
"""

from list_sorter import german_sort_key, sort_labels, sort_tasks
from task_gateway import Task


def contents(tasks):
    return [t["content"] if isinstance(t, dict) else t.content for t in tasks]


class TestSortTasks:
    def test_priority_then_content(self):
        tasks = [
            {"priority": 4, "content": "B"},
            {"priority": 4, "content": "A"},
            {"priority": 2, "content": "Z"},
        ]
        assert contents(sort_tasks(tasks)) == ["A", "B", "Z"]

    def test_priority_descending(self):
        tasks = [Task(id="1", content="x", priority=1), Task(id="2", content="x", priority=4),
                 Task(id="3", content="x", priority=3)]
        assert [t.id for t in sort_tasks(tasks)] == ["2", "3", "1"]

    def test_missing_priority_counts_as_one(self):
        tasks = [{"content": "a"}, {"priority": 2, "content": "b"}]
        assert contents(sort_tasks(tasks)) == ["b", "a"]

    def test_case_insensitive(self):
        tasks = [{"priority": 1, "content": "b"}, {"priority": 1, "content": "A"}]
        assert contents(sort_tasks(tasks)) == ["A", "b"]

    def test_umlaut_sorts_with_base_letter(self):
        tasks = [{"priority": 1, "content": c} for c in ["Zaun", "Äpfel", "Birne"]]
        assert contents(sort_tasks(tasks)) == ["Äpfel", "Birne", "Zaun"]

    def test_eszett_sorts_as_ss(self):
        tasks = [{"priority": 1, "content": c} for c in ["Strasse B", "Straße A"]]
        assert contents(sort_tasks(tasks)) == ["Straße A", "Strasse B"]

    def test_returns_new_list(self):
        tasks = [{"priority": 1, "content": "b"}, {"priority": 1, "content": "a"}]
        result = sort_tasks(tasks)
        assert result is not tasks
        assert contents(tasks) == ["b", "a"]

    def test_empty(self):
        assert sort_tasks([]) == []


class TestGermanSortKey:
    def test_unaccented_before_accented_on_tie(self):
        assert german_sort_key("Muller") < german_sort_key("Müller")

    def test_lowercase_before_uppercase_on_tie(self):
        assert german_sort_key("ab") < german_sort_key("Ab")

    def test_none_safe(self):
        assert german_sort_key(None)[0] == ""


class TestSortLabels:
    def test_distinct_and_sorted(self):
        assert sort_labels(["K200", "befr0124", "K100", "K200"]) == ["befr0124", "K100", "K200"]

    def test_umlauts(self):
        assert sort_labels(["Zelt", "Öl", "Ofen"]) == ["Ofen", "Öl", "Zelt"]
