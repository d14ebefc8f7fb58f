# qiagent/cli.py
import argparse
import getpass
import os
import sys

from . import __version__
from .config import NETWORK_CONFIGS, QiAgentConfig
from .core.errors import QiAgentError
from .core.wallet import QiAgentWallet
from .core.zones import ALL_ZONES
from .utils.console import print_error, print_info, print_success, print_warn
from .utils.formatting import format_balance

DEFAULT_WALLET_PATH = os.path.join(os.path.expanduser("~"), ".qiagent", "wallet.json")


def _password(args, confirm=False):
    if args.password:
        return args.password
    env_password = os.getenv("QIAGENT_PASSWORD")
    if env_password:
        return env_password
    password = getpass.getpass("Wallet password: ")
    if confirm and password != getpass.getpass("Repeat password: "):
        raise ValueError("Passwords do not match")
    return password


def _config(args) -> QiAgentConfig:
    config = QiAgentConfig(network=args.network)
    if args.rpc_url:
        config.rpc_url = args.rpc_url
    return config


def _load(args):
    """Open the wallet file; returns the wallet and the password used, if any."""
    if args.seed:
        return QiAgentWallet.load_from_file(args.wallet, seed=args.seed, config=_config(args)), None
    password = _password(args)
    return QiAgentWallet.load_from_file(args.wallet, password=password, config=_config(args)), password


def cmd_create(args):
    if os.path.exists(args.wallet) and not args.force:
        print_error(f"❌ Wallet file already exists: {args.wallet} (use --force to overwrite)")
        return 1
    password = _password(args, confirm=True)
    wallet, seed = QiAgentWallet.create(_config(args))
    wallet.save_to_file(args.wallet, password=password)
    print_success(f"Payment code: {wallet.get_payment_code()}")
    print_warn("⚠️  Write down your seed and keep it secret:")
    print(seed)
    return 0


def cmd_code(args):
    wallet, _ = _load(args)
    print(wallet.get_payment_code())
    return 0


def cmd_sync(args):
    wallet, password = _load(args)
    zones = ALL_ZONES if args.all_zones else (args.zone or None)
    report = wallet.sync(zones)
    print_info(f"New senders: {len(report.new_senders)}, new outputs: {len(report.new_outpoints)}")
    for zone, error in report.scan.errors.items():
        print_warn(f"⚠️  {zone}: {error.cause}")
    wallet.save_to_file(args.wallet, password=password)
    return 0 if report.ok else 2


def cmd_balance(args):
    wallet, _ = _load(args)
    if args.sync:
        wallet.sync(ALL_ZONES if args.zone is None else args.zone)
    if args.zone:
        balance = wallet.get_zone_balance(args.zone)
        print(f"{balance.zone}: {format_balance(balance.balance)} ({balance.utxo_count} outputs, "
              f"{format_balance(balance.locked_balance)} locked)")
        return 0
    total = wallet.get_total_balance()
    for zone, balance in total.zones.items():
        if balance.utxo_count:
            print(f"{zone}: {format_balance(balance.balance)}")
    for zone, warning in total.warnings.items():
        print_warn(f"⚠️  {zone}: {warning}")
    print(f"Total: {format_balance(total.total)}")
    return 0


def cmd_send(args):
    wallet, password = _load(args)
    wallet.sync(args.zone)
    result = wallet.send_qi(args.recipient, args.amount, args.zone, args.to_zone)
    if result.notification:
        print_info(f"Notification: {result.notify_tx_hash}")
    print_success(f"Transfer: {result.qi_tx_hash}")
    wallet.save_to_file(args.wallet, password=password)
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="qi-agent", description="Qi Agent SDK stealth payment wallet")
    parser.add_argument('--version', action='store_true', help='Show version')
    parser.add_argument('--wallet', default=os.getenv("QIAGENT_WALLET", DEFAULT_WALLET_PATH),
                        help='Wallet snapshot file')
    parser.add_argument('--network', default=os.getenv("QIAGENT_NETWORK", "mainnet"),
                        choices=sorted(NETWORK_CONFIGS), help='Network preset')
    parser.add_argument('--rpc-url', default=None, help='Override the gateway URL')
    parser.add_argument('--password', default=None, help='Snapshot password (or QIAGENT_PASSWORD)')
    parser.add_argument('--seed', default=None, help='Unlock with the seed instead of a password')

    sub = parser.add_subparsers(dest="command")

    create = sub.add_parser("create", help="Create a new wallet")
    create.add_argument('--force', action='store_true', help='Overwrite an existing wallet file')
    create.set_defaults(func=cmd_create)

    code = sub.add_parser("code", help="Print the wallet's payment code")
    code.set_defaults(func=cmd_code)

    sync = sub.add_parser("sync", help="Discover senders and scan for payments")
    sync.add_argument('--zone', default=None, help='Zone to scan (default zone if omitted)')
    sync.add_argument('--all-zones', action='store_true', help='Scan every zone')
    sync.set_defaults(func=cmd_sync)

    balance = sub.add_parser("balance", help="Show balances")
    balance.add_argument('--zone', default=None, help='Only this zone')
    balance.add_argument('--sync', action='store_true', help='Sync before reporting')
    balance.set_defaults(func=cmd_balance)

    send = sub.add_parser("send", help="Send Qi to a payment code")
    send.add_argument('recipient', help='Recipient payment code')
    send.add_argument('amount', help='Amount in Qi, e.g. 1.5')
    send.add_argument('--zone', default=None, help='Origin zone')
    send.add_argument('--to-zone', default=None, help='Destination zone (origin zone if omitted)')
    send.set_defaults(func=cmd_send)
    return parser


def main(argv=None):
    """Command line interface for the Qi agent wallet"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"qiagent v{__version__}")
        return 0
    if not getattr(args, "func", None):
        print("qiagent - Use 'qi-agent --help' for options")
        return 0

    try:
        return args.func(args)
    except (QiAgentError, ValueError) as e:
        print_error(f"❌ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
