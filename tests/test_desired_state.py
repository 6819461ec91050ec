#tests\test_desired_state.py

"""Test desired state store."""

import pytest

from fleet_scheduler.core.errors import ConfigurationError, PersistenceError, StoreUnavailableError
from fleet_scheduler.desired_state.store import DesiredStateStore

from conftest import make_spec


class TestLoad:
    """Test loading and seeding."""

    def test_first_start_seeds_default(self, repository):
        store = DesiredStateStore(repository, make_spec(3))

        spec = store.load()

        assert spec.count == 3
        assert repository.load_desired_spec() == make_spec(3)

    def test_stored_spec_wins_over_default(self, repository):
        repository.save_desired_spec(make_spec(5))
        store = DesiredStateStore(repository, make_spec(3))

        assert store.load().count == 5

    def test_unreachable_store(self, repository):
        repository.available = False
        store = DesiredStateStore(repository, make_spec(3))

        with pytest.raises(StoreUnavailableError):
            store.load()
        assert not store.loaded

    def test_current_before_load_raises(self, repository):
        with pytest.raises(StoreUnavailableError):
            DesiredStateStore(repository, make_spec(3)).current()

    def test_invalid_default_rejected(self, repository):
        with pytest.raises(ConfigurationError):
            DesiredStateStore(repository, make_spec(-1))


class TestUpdate:
    """Test reconfiguration."""

    @pytest.fixture
    def store(self, repository):
        store = DesiredStateStore(repository, make_spec(3))
        store.load()
        return store

    def test_update_persists_and_notifies(self, store, repository):
        changes = []
        store.on_change(lambda previous, spec: changes.append((previous.count, spec.count)))

        store.scale(5)

        assert store.current().count == 5
        assert repository.load_desired_spec().count == 5
        assert changes == [(3, 5)]

    def test_same_spec_is_noop(self, store, repository):
        changes = []
        store.on_change(lambda previous, spec: changes.append(spec))
        writes = repository.writes

        store.update(make_spec(3))

        assert changes == []
        assert repository.writes == writes

    @pytest.mark.parametrize("spec", [
        make_spec(-1),
        make_spec(3, cpu=0),
        make_spec(3, memory=0),
        make_spec(3, ports=((9200, 9200),)),
        make_spec(3, ports=((9200, 70000),)),
        make_spec(3, ports=((9200, 9300), (9200, 9300))),
    ])
    def test_invalid_spec_rejected(self, store, spec):
        with pytest.raises(ConfigurationError):
            store.update(spec)
        assert store.current().count == 3

    def test_failed_persist_keeps_previous(self, store, repository):
        repository.fail_writes = True

        with pytest.raises(PersistenceError):
            store.scale(7)

        assert store.current().count == 3
