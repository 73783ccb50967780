"""Tests for actuator.core.command_registry."""

import pytest

from actuator.core.command_registry import CommandRegistry
from actuator.exceptions import DuplicateCommandError, RegistryClosedError


class CancelSpy:
    def __init__(self, fail: bool = False):
        self.calls = 0
        self.fail = fail

    def __call__(self):
        self.calls += 1
        if self.fail:
            raise RuntimeError("cancel failed")


class TestRegister:

    def test_register_and_lookup(self):
        registry = CommandRegistry()
        entry = registry.register('cmd-1', 'actuator/shell', CancelSpy())

        assert 'cmd-1' in registry
        assert len(registry) == 1
        assert registry.get('cmd-1') is entry
        assert entry.capability == 'actuator/shell'
        assert entry.started_at > 0

    def test_duplicate_id_rejected_and_original_kept(self):
        registry = CommandRegistry()
        original = CancelSpy()
        registry.register('cmd-1', 'actuator/shell', original)

        with pytest.raises(DuplicateCommandError) as exc_info:
            registry.register('cmd-1', 'actuator/shell', CancelSpy())

        assert exc_info.value.command_id == 'cmd-1'
        assert registry.get('cmd-1').cancel is original

    def test_unregister_removes_entry(self):
        registry = CommandRegistry()
        registry.register('cmd-1', 'shell', CancelSpy())

        assert registry.unregister('cmd-1').id == 'cmd-1'
        assert 'cmd-1' not in registry
        assert registry.unregister('cmd-1') is None

    def test_id_reusable_after_unregister(self):
        registry = CommandRegistry()
        registry.register('cmd-1', 'shell', CancelSpy())
        registry.unregister('cmd-1')
        registry.register('cmd-1', 'shell', CancelSpy())
        assert registry.active_ids() == ['cmd-1']


class TestCancelAll:

    def test_cancels_every_entry_and_clears(self):
        registry = CommandRegistry()
        spies = [CancelSpy(), CancelSpy()]
        registry.register('a', 'shell', spies[0])
        registry.register('b', 'shell', spies[1])

        assert registry.cancel_all() == 2

        assert [s.calls for s in spies] == [1, 1]
        assert len(registry) == 0
        assert registry.closed

    def test_failing_cancel_does_not_stop_the_rest(self):
        registry = CommandRegistry()
        bad, good = CancelSpy(fail=True), CancelSpy()
        registry.register('a', 'shell', bad)
        registry.register('b', 'shell', good)

        registry.cancel_all()

        assert good.calls == 1
        assert len(registry) == 0

    def test_register_after_close_cancels_command(self):
        registry = CommandRegistry()
        registry.cancel_all()
        spy = CancelSpy()

        with pytest.raises(RegistryClosedError):
            registry.register('late', 'shell', spy)

        assert spy.calls == 1
        assert 'late' not in registry

    def test_cancel_all_on_empty_registry(self):
        assert CommandRegistry().cancel_all() == 0
