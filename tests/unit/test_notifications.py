"""
Unit tests for the notifier collaborator (volbackup/notifications.py).
"""

from volbackup.notifications import Notifier, BACKUP_FAILED, RESTORE_COMPLETED, log_handler


class TestNotifier:
    """Test handler dispatch and config gating."""

    def test_delivers_to_handlers(self):
        received = []
        notifier = Notifier()
        notifier.register(lambda event, payload: received.append((event, payload)))

        delivered = notifier.notify(BACKUP_FAILED, {'backup_id': 1})

        # log_handler is always registered
        assert delivered == 2
        assert received == [(BACKUP_FAILED, {'backup_id': 1})]

    def test_register_is_idempotent(self):
        notifier = Notifier()
        notifier.register(log_handler)
        assert notifier.notify(RESTORE_COMPLETED, {}) == 1

    def test_failing_handler_does_not_block_others(self):
        received = []

        def broken(event, payload):
            raise RuntimeError('smtp down')

        notifier = Notifier()
        notifier.register(broken)
        notifier.register(lambda event, payload: received.append(event))

        assert notifier.notify(BACKUP_FAILED, {}) == 2
        assert received == [BACKUP_FAILED]

    def test_unregister(self):
        received = []

        def handler(event, payload):
            received.append(event)

        notifier = Notifier()
        notifier.register(handler)
        notifier.unregister(handler)
        notifier.notify(BACKUP_FAILED, {})

        assert received == []

    def test_disabled_by_config(self, app):
        received = []
        notifier = Notifier()
        notifier.register(lambda event, payload: received.append(event))
        app.config['NOTIFY_BACKUP_FAILURE'] = False

        with app.app_context():
            assert notifier.notify(BACKUP_FAILED, {}) == 0
            assert notifier.notify(RESTORE_COMPLETED, {}) == 2

        assert received == [RESTORE_COMPLETED]
