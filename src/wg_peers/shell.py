# src/wg_peers/shell.py
from __future__ import annotations

import logging
import subprocess
from typing import List, Optional, Protocol, Union

from .errors import ExternalCommandError

logger = logging.getLogger(__name__)


class Runner(Protocol):
    def __call__(
        self,
        cmd: List[str],
        input: Optional[str] = None,
        log: Union[bool, str] = True,
    ) -> str: ...


def run_command(
    cmd: List[str],
    input: Optional[str] = None,
    log: Union[bool, str] = True,
) -> str:
    """
    Exécute `cmd` et retourne stdout (strip).

    `log` vaut True (on logge la commande), False (rien), ou une chaîne
    à logger à la place de la vraie commande, pour masquer les clés.
    Lève ExternalCommandError si le code retour est non nul.
    """
    shown = " ".join(cmd) if log is True else log
    if shown:
        logger.debug(f"$ {shown}")

    try:
        result = subprocess.run(
            cmd,
            input=input,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise ExternalCommandError(shown or cmd[0], 127, str(e)) from e

    if result.returncode != 0:
        raise ExternalCommandError(shown or cmd[0], result.returncode, result.stderr)
    return result.stdout.strip()
