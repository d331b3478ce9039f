import argparse
import logging
from pathlib import Path
import sys

from . import config
from .model import MutationKind
from .worker import create


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='callmibro-offline',
                                     description='Manage the CallMiBro offline cache and submission queue.')
    parser.add_argument('--data-dir', type=Path, default=config.DATA_DIR,
                        help='directory holding the cache buckets and the offline queue')
    parser.add_argument('--origin', default=config.ORIGIN, help='origin of the CallMiBro application')
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('install', help='pre-cache the static assets of the current version')
    subparsers.add_parser('activate', help='delete caches of previous versions')
    subparsers.add_parser('register', help='install, then activate')

    sync = subparsers.add_parser('sync', help='deliver queued submissions')
    sync.add_argument('tag', choices=[kind.sync_tag for kind in MutationKind])

    pending = subparsers.add_parser('pending', help='list queued submissions')
    pending.add_argument('kind', choices=[kind.value for kind in MutationKind])
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    worker = create(args.data_dir, origin=args.origin)
    try:
        if args.command == 'install':
            worker.install()
        elif args.command == 'activate':
            for name in worker.activate():
                print('deleted {}'.format(name))
        elif args.command == 'register':
            worker.register()
        elif args.command == 'sync':
            result = worker.sync(args.tag)
            if result is None:
                return 1
            print('delivered {}, still queued {}'.format(len(result.delivered), len(result.failed)))
            return 1 if result.failed else 0
        elif args.command == 'pending':
            for mutation in worker.queue.pending(MutationKind(args.kind)):
                print('{}\tattempts={}\t{}'.format(mutation.id, mutation.attempts, mutation.last_error or ''))
    finally:
        worker.close()
    return 0


if __name__ == '__main__':
    sys.exit(main())
