"""Contains the logger shared by all torchhof modules.

``torchhof`` logs through the standard
`logging <https://docs.python.org/3/library/logging.html>`__ library.
Messages are grouped in two levels:

* ``DEBUG``: solver statistics (steps taken, levels refined, workers used).
* ``WARNING``: something unexpected happened that may require attention.

Nothing is configured by the library itself. Calling applications choose the
format and level by configuring ``torchhof._logger.torchhof_logger``, e.g.::

    >>> import logging
    >>> logging.basicConfig(
    ...     level=logging.DEBUG,
    ...     format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    ... )
"""

import logging

logger_name = "torchhof"
torchhof_logger = logging.getLogger(logger_name)
