"""Tests for connectivity tracking."""

from src.remote.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:
    def test_unknown_until_first_check(self, connectivity):
        monitor = ConnectivityMonitor(connectivity)
        assert monitor.last_known is None
        assert monitor.is_online() is True
        assert monitor.last_known is True

    def test_check_exception_counts_as_offline(self):
        def probe():
            raise OSError("no route to host")

        monitor = ConnectivityMonitor(probe)
        assert monitor.is_online() is False

    def test_notifies_on_transition_only(self, connectivity):
        monitor = ConnectivityMonitor(connectivity)
        seen = []
        monitor.subscribe(seen.append)

        monitor.is_online()  # first observation is not a transition
        monitor.is_online()
        connectivity.online = False
        monitor.is_online()
        monitor.is_online()
        connectivity.online = True
        monitor.is_online()

        assert seen == [False, True]

    def test_set_online(self):
        monitor = ConnectivityMonitor(lambda: True, initial=False)
        seen = []
        monitor.subscribe(seen.append)
        monitor.set_online(True)
        assert seen == [True]
        assert monitor.last_known is True

    def test_unsubscribe(self):
        monitor = ConnectivityMonitor(lambda: True, initial=True)
        seen = []
        unsubscribe = monitor.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        monitor.set_online(False)
        assert seen == []

    def test_listener_failure_does_not_block_others(self, capsys):
        monitor = ConnectivityMonitor(lambda: True, initial=True)
        seen = []

        def broken(online):
            raise RuntimeError("listener bug")

        monitor.subscribe(broken)
        monitor.subscribe(seen.append)
        monitor.set_online(False)

        assert seen == [False]
        assert "listener bug" in capsys.readouterr().out
