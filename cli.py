#!/usr/bin/env python3
"""
megaman/cli.py
Command-line interface for megaman
"""

import sys
import argparse
import os
from typing import List

from config.config import config_service
from services.api import api_client
from services.drive import drive_service, format_size
from services.errors import InvalidLinkError, MegaError
from services.links import is_file_link, is_folder_link


class MegamanCLI:
    """Main CLI application"""

    def __init__(self):
        self.config = config_service
        self.api = api_client
        self.drive = drive_service
        self.debug = False

    def _log(self, message: str) -> None:
        """Debug logging"""
        if self.debug:
            print(f"🔍 [DEBUG] {message}")

    def build_parser(self) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            prog='megaman',
            description='megaman - Downloader for MEGA public links',
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  megaman get 'https://mega.nz/#!XXXXXXXX!key...' -o downloads
  megaman get 'https://mega.nz/folder/XXXXXXXX#key...' -o downloads
  megaman get links.txt -o downloads
  megaman ls 'https://mega.nz/folder/XXXXXXXX#key...'
  megaman info 'https://mega.nz/#!XXXXXXXX!key...'
            """
        )

        # Global flags
        parser.add_argument('-v', '--verbose', action='store_true',
                            help='Enable verbose debug output')
        parser.add_argument('--timeout', type=float, default=None,
                            help='Network timeout in seconds (default: wait forever)')
        parser.add_argument('--verify-mac', action='store_true',
                            help='Check downloaded content against the MAC in the key')

        subparsers = parser.add_subparsers(dest='command', help='Commands')

        get_parser = subparsers.add_parser('get', help='Download a file or folder link')
        get_parser.add_argument('source', help='Share link, or a file containing links')
        get_parser.add_argument('-o', '--output', default='.', help='Output folder')
        get_parser.add_argument('-q', '--quiet', action='store_true', help='No progress bars')

        ls_parser = subparsers.add_parser('ls', help='List a shared folder')
        ls_parser.add_argument('link', help='Folder link')
        ls_parser.add_argument('-l', '--depth', type=int, default=-1, help='Max depth to show')

        info_parser = subparsers.add_parser('info', help='Show name and size of a file link')
        info_parser.add_argument('link', help='File link')

        return parser

    def run(self, args: list) -> int:
        """Main entry point"""
        parser = self.build_parser()
        parsed = parser.parse_args(args)

        self.debug = parsed.verbose
        self.api.debug = parsed.verbose
        self.drive.debug = parsed.verbose

        if parsed.timeout is not None:
            self.api.timeout = parsed.timeout
            self.config.download_timeout = parsed.timeout
        if parsed.verify_mac:
            self.config.verify_mac = True

        if not parsed.command:
            parser.print_help()
            return 1

        try:
            if parsed.command == 'get':
                return self.handle_get(parsed)
            elif parsed.command == 'ls':
                return self.handle_list(parsed)
            elif parsed.command == 'info':
                return self.handle_info(parsed)
            else:
                print(f"Unknown command: {parsed.command}")
                return 1

        except KeyboardInterrupt:
            print("\n❌ Cancelled by user")
            return 1
        except MegaError as e:
            print(f"❌ Error: {e}")
            if self.debug:
                import traceback
                traceback.print_exc()
            return 1
        except OSError as e:
            print(f"❌ Error: {e}")
            if self.debug:
                import traceback
                traceback.print_exc()
            return 1

    # ============================================================================
    # HANDLERS
    # ============================================================================

    def _read_links(self, path: str) -> List[str]:
        with open(path, 'r', encoding='utf-8') as f:
            return f.read().split()

    def handle_get(self, args) -> int:
        """Handle get command"""
        if os.path.isfile(args.source):
            print(f"📋 Processing links from {args.source}")
            for link in self._read_links(args.source):
                if not is_file_link(link) and not is_folder_link(link):
                    self._log(f"Skipping non-link entry: {link}")
                    continue
                self._process_link(link, args.output, args.quiet)
            return 0

        return self._process_link(args.source, args.output, args.quiet)

    def _process_link(self, link: str, output: str, quiet: bool) -> int:
        print(f"🔗 {link}")
        show_progress = not quiet

        if is_file_link(link):
            print("📥 Downloading file...")
            path = self.drive.download_to(link, output, show_progress=show_progress)
            print(f"✅ Downloaded: {path}")
            return 0

        if is_folder_link(link):
            print("📥 Downloading folder...")
            paths = self.drive.download_tree_to(link, output, show_progress=show_progress)
            print(f"✅ Downloaded {len(paths)} file(s) to {output}")
            return 0

        raise InvalidLinkError(link, 'unknown url type')

    def handle_list(self, args) -> int:
        """Handle ls command"""
        fs = self.drive.list_folder(args.link)

        print("\n🌳 Folder tree")
        print("=" * 60)
        self.drive.print_tree(fs, lambda line: print(line), max_depth=args.depth)

        if fs.dropped:
            print(f"\n⚠️  {len(fs.dropped)} node(s) could not be decoded:")
            for node_hash, reason in fs.dropped:
                print(f"   {node_hash}: {reason}")

        return 0

    def handle_info(self, args) -> int:
        """Handle info command"""
        info = self.drive.get_file_info(args.link)
        print(f"📄 {info.name} ({format_size(info.size)})")
        if self.debug:
            print(f"   URL: {info.url}")
        return 0


def main():
    """Main entry point"""
    cli = MegamanCLI()
    sys.exit(cli.run(sys.argv[1:]))


if __name__ == '__main__':
    main()
