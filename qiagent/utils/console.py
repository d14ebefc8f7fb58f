import os

from colorama import Fore, Style, init
init(autoreset=True)


def _quiet():
    return os.getenv("QIAGENT_QUIET", "0") == "1"


def print_info(msg):
    if not _quiet():
        print(Fore.CYAN + str(msg) + Style.RESET_ALL)

def print_warn(msg):
    if not _quiet():
        print(Fore.YELLOW + str(msg) + Style.RESET_ALL)

def print_error(msg):
    if not _quiet():
        print(Fore.RED + str(msg) + Style.RESET_ALL)

def print_success(msg):
    if not _quiet():
        print(Fore.GREEN + str(msg) + Style.RESET_ALL)

def print_debug(msg):
    if not _quiet() and os.getenv("QIAGENT_DEBUG", "0") == "1":
        print(Fore.MAGENTA + str(msg) + Style.RESET_ALL)
