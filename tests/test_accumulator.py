import re

from chatrelay.agent.accumulator import ToolCallAccumulator
from chatrelay.providers.base import ToolCallFragment


class TestMerge:
    def test_arguments_are_concatenated_in_arrival_order(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(id="call_1", index=0, type="function", name="order_sandwich", arguments=""))
        for part in ['{"fil', 'ling": ', '"Tur', 'key"}']:
            acc.add(ToolCallFragment(index=0, arguments=part))

        call = acc.get()
        assert call.id == "call_1"
        assert call.name == "order_sandwich"
        assert call.function.arguments == '{"filling": "Turkey"}'

    def test_repeated_name_does_not_reset(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(id="call_1", index=0, name="f", arguments='{"a":'))
        acc.add(ToolCallFragment(index=0, name="f", arguments=" 1}"))

        assert acc.get().function.arguments == '{"a": 1}'
        assert acc.get().id == "call_1"

    def test_missing_id_and_type_are_synthesized(self):
        acc = ToolCallAccumulator()
        call = acc.add(ToolCallFragment(name="send_photo"))

        assert re.fullmatch(r"call_[a-z0-9]{6}", call.id)
        assert call.type == "function"
        assert call.index == 0

    def test_fragment_without_index_joins_last_touched_slot(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(id="call_1", index=2, name="f", arguments="{"))
        acc.add(ToolCallFragment(arguments="}"))

        assert [c.index for c in acc.calls()] == [2]
        assert acc.get().function.arguments == "{}"


class TestReset:
    def test_name_change_discards_previous_call(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(id="call_a", index=0, name="a", arguments='{"x": 1'))
        acc.add(ToolCallFragment(id="call_b", index=0, name="b", arguments='{"y"'))
        acc.add(ToolCallFragment(index=0, arguments=": 2}"))

        call = acc.get()
        assert call.id == "call_b"
        assert call.name == "b"
        assert call.function.arguments == '{"y": 2}'
        assert len(acc.calls()) == 1

    def test_reset_clears_everything(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(index=0, name="a"))
        acc.reset()

        assert not acc
        assert acc.get() is None
        assert acc.calls() == []


class TestInterleaved:
    def test_calls_at_different_indices_are_kept_apart(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(id="call_0", index=0, name="order_sandwich", arguments='{"filling"'))
        acc.add(ToolCallFragment(id="call_1", index=1, name="send_photo", arguments='{"subject"'))
        acc.add(ToolCallFragment(index=0, arguments=': "Ham"}'))
        acc.add(ToolCallFragment(index=1, arguments=': "face"}'))

        calls = acc.calls()
        assert [(c.id, c.name, c.function.arguments) for c in calls] == [
            ("call_0", "order_sandwich", '{"filling": "Ham"}'),
            ("call_1", "send_photo", '{"subject": "face"}'),
        ]

    def test_nameless_slots_are_not_reported(self):
        acc = ToolCallAccumulator()
        acc.add(ToolCallFragment(index=0, arguments="{}"))

        assert acc
        assert acc.calls() == []
