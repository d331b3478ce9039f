from contextlib import redirect_stdout
from io import StringIO
from pathlib import Path
from tempfile import TemporaryDirectory
from unittest import TestCase

from callmibro_offline import cli, config
from callmibro_offline.mutations import KeyValueStore


ORIGIN = 'http://callmibro.test'


class TestCli(TestCase):
    def _run(self, directory: str, *args):
        out = StringIO()
        with redirect_stdout(out):
            code = cli.main(['--data-dir', directory, '--origin', ORIGIN] + list(args))
        return code, out.getvalue()

    def test_pending(self):
        with TemporaryDirectory() as directory:
            store = KeyValueStore(Path(directory) / config.KV_STORE_FILENAME)
            store.put('offline-bookings', 'b1', {'id': 'b1'})
            store.record_failure('offline-bookings', 'b1', 'HTTP 503')
            store.close()

            code, output = self._run(directory, 'pending', 'booking')

            self.assertEqual(0, code)
            self.assertEqual('b1\tattempts=1\tHTTP 503\n', output)

    def test_activate(self):
        with TemporaryDirectory() as directory:
            (Path(directory) / 'caches' / 'stale-bucket').mkdir(parents=True)

            code, output = self._run(directory, 'activate')

            self.assertEqual(0, code)
            self.assertEqual('deleted stale-bucket\n', output)
            self.assertFalse((Path(directory) / 'caches' / 'stale-bucket').exists())

    def test_rejects_unknown_sync_tag(self):
        with self.assertRaises(SystemExit):
            cli.build_parser().parse_args(['sync', 'newsletter-sync'])
