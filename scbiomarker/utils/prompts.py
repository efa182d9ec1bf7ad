"""
Interactive prompts for saving outputs and picking options.
"""
from typing import List, Optional, Sequence

import click


class Prompter:
    """
    Blocking yes/no and multi-select prompts.

    When ``interactive`` is False every question is answered with its
    default without touching the terminal, so batch runs never block.
    """

    def __init__(self, interactive: bool = True, logger=None):
        self.interactive = interactive
        self.logger = logger

    def _log(self, message: str) -> None:
        if self.logger:
            self.logger.info(message)

    def confirm(self, question: str, default: bool = False) -> bool:
        """Ask a yes/no question."""
        if not self.interactive:
            self._log(f"{question} -> {'yes' if default else 'no'} (non-interactive)")
            return default
        return click.confirm(question, default=default)

    def select_many(
        self,
        question: str,
        options: Sequence[str],
        default: Optional[Sequence[str]] = None
    ) -> List[str]:
        """
        Pick any number of options.

        The answer is a comma-separated list of option names or 1-based
        indices. An empty answer keeps ``default`` (all options if None).
        """
        options = list(options)
        default = list(options if default is None else default)
        unknown = [d for d in default if d not in options]
        if unknown:
            raise ValueError(f"Default choices not among options: {unknown}")

        if not self.interactive or not options:
            self._log(f"{question} -> {default} (non-interactive)")
            return default

        click.echo(question)
        for i, option in enumerate(options, 1):
            click.echo(f"  {i}. {option}")
        answer = click.prompt(
            "Selection (comma-separated names or numbers)",
            default=",".join(default),
            show_default=True,
        )
        return parse_selection(answer, options)

    def select_one(self, question: str, options: Sequence[str], default: Optional[str] = None) -> str:
        """Pick exactly one option."""
        options = list(options)
        if not options:
            raise ValueError(f"No options to choose from for: {question}")
        default = options[0] if default is None else default
        if default not in options:
            raise ValueError(f"Default choice '{default}' not among options: {options}")

        if not self.interactive:
            self._log(f"{question} -> {default} (non-interactive)")
            return default

        return click.prompt(question, type=click.Choice(options), default=default)


def parse_selection(answer: str, options: Sequence[str]) -> List[str]:
    """Resolve a comma-separated answer of names or 1-based indices."""
    options = list(options)
    selected = []
    for token in answer.split(','):
        token = token.strip()
        if not token:
            continue
        if token in options:
            choice = token
        elif token.isdigit() and 1 <= int(token) <= len(options):
            choice = options[int(token) - 1]
        else:
            raise click.BadParameter(f"'{token}' is not one of {options}")
        if choice not in selected:
            selected.append(choice)
    return selected
