"""Tests for boardroom/memory.py."""

from boardroom.memory import AgentMemory


def _seeded() -> AgentMemory:
    memory = AgentMemory()
    memory.store("ceo", "s1", "Europe expansion", "Open a Berlin pilot office first.", 0.9)
    memory.store("ceo", "s2", "Europe expansion", "Acquire a Paris competitor outright.", 0.5)
    memory.store("ceo", "s3", "Office snacks", "Switch snack vendor.", 0.75)
    memory.store("cfo", "s1", "Europe expansion", "Hedge euro exposure.", 0.75)
    return memory


async def test_no_history_gives_no_advice():
    assert await AgentMemory().advise("ceo", "Europe expansion") == ""


async def test_memories_without_outcome_give_no_advice():
    assert await _seeded().advise("ceo", "Europe expansion") == ""


async def test_advice_lists_successes_and_failures():
    memory = _seeded()
    memory.record_outcome("s1", "ceo", "success")
    memory.record_outcome("s2", "ceo", "failure")

    advice = await memory.advise("ceo", "Should we start the Europe expansion?")

    assert advice.startswith("Based on past experience:")
    assert "**Successful approaches:**\n• Open a Berlin pilot office first. (90% confidence)" in advice
    assert "**Approaches to avoid:**\n• Acquire a Paris competitor outright." in advice
    assert "snack" not in advice


async def test_advice_is_per_role():
    memory = _seeded()
    memory.record_outcome("s1", "cfo", "success")
    assert await memory.advise("ceo", "Europe expansion") == ""
    assert "Hedge euro exposure." in await memory.advise("cfo", "Europe expansion")


def test_record_outcome_counts_updates():
    memory = _seeded()
    assert memory.record_outcome("s1", "ceo", "success") == 1
    assert memory.record_outcome("s9", "ceo", "success") == 0


def test_relevant_ranks_by_overlap_then_recency():
    memory = AgentMemory()
    memory.store("cto", "s1", "cloud migration plan", "Move to managed Postgres.", 0.8)
    memory.store("cto", "s2", "cloud costs", "Reserve instances.", 0.8)
    memory.store("cto", "s3", "cloud migration plan", "Lift and shift first.", 0.8)

    ranked = memory.relevant("cto", "cloud migration plan")
    assert [m.session_id for m in ranked] == ["s3", "s1", "s2"]
    assert memory.relevant("cto", "an ok") == []


async def test_long_memories_are_summarised():
    memory = AgentMemory()
    memory.store("hr", "s1", "hiring plan", "word " * 100, 0.8)
    memory.record_outcome("s1", "hr", "success")

    advice = await memory.advise("hr", "hiring plan")
    line = advice.splitlines()[-1]
    assert line == "• " + "word " * 40 + "... (80% confidence)"
