"""Terminal front end for the chat client: prompts, colored output, input."""

import sys
from typing import Optional

from colorama import Fore, Style, init

from .protocol import join_notice, leave_notice


class ConsoleUI:
    """
    Supplies the username and outbound lines, shows inbound lines.

    Inbound lines are printed over the current prompt ("\\r") and the
    prompt is re-drawn afterwards, so typing is not visually lost.
    """

    def __init__(self, prompt: str = "> ", username: Optional[str] = None):
        init(autoreset=True)  # Reset colour after each print
        self.prompt = prompt
        self.username = username

    def ask_username(self) -> str:
        """Keep asking until a non-blank name is typed. EOFError propagates."""
        while True:
            name = input("Your name: ").strip()
            if name:
                self.username = name
                return name
            print(f"{Fore.RED}Username cannot be empty.{Style.RESET_ALL}")

    def read_message(self) -> str:
        return input(self.prompt)

    def show(self, line: str):
        if self._is_notice(line):
            text = f"{Fore.CYAN}[CHAT]{Style.RESET_ALL} {line}"
        elif self.username and line.startswith(f"{self.username}: "):
            text = f"{Style.DIM}{line}{Style.RESET_ALL}"
        else:
            sender, sep, rest = line.partition(": ")
            text = f"{Fore.GREEN}{sender}{sep}{Style.RESET_ALL}{rest}" if sep else line
        self._print_over_prompt(text)

    def status(self, message: str):
        self._print_over_prompt(f"{Fore.YELLOW}[*]{Style.RESET_ALL} {message}")

    def _print_over_prompt(self, text: str):
        print(f"\r{text}")
        sys.stdout.write(self.prompt)
        sys.stdout.flush()

    @staticmethod
    def _is_notice(line: str) -> bool:
        """Server notices are "<name> has joined/left the chat", with no sender prefix."""
        if ": " in line:
            return False
        return line.endswith(join_notice("")) or line.endswith(leave_notice(""))
