# Copyright (C) 2025 EchemSim authors
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
# =============================================================================
"""Package logger."""

import logging


def setup_logger(name, level=logging.INFO):

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # attach the handler only once, modules may be reloaded in notebooks
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        formatter = logging.Formatter('[%(asctime)s][%(levelname)s] %(name)s: %(message)s',
                                      datefmt='%m-%d %H:%M:%S')
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.propagate = False

    return logger


logger = setup_logger('echemsim')
