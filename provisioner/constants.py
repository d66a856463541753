"""Constants shared by the provisioner modules."""

from enum import Enum


class ExitCodes(Enum):
    """Process exit codes returned by the command line entry point."""

    SUCCESS = 0
    CONFIG_ERROR = 1
    RESOLUTION_ERROR = 2


LOG_FORMAT = "[%(levelname)s] %(message)s"

DEFAULT_CONFIG_FILE = "development.properties"
DEFAULT_SCRIPTLETS_DIR = "scriptlets"
SCRIPTLET_SUFFIX = ".sh"
COMMON_SCOPE = "common"

REPOS_PREFIX = "development.repos."
PROVISION_PREFIX = "development.provision."
OS_FAMILY_KEY = "development.os"
PACKAGER_KEY = "development.packager"
