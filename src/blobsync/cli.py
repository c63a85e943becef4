####################################################################################################
# Description: Command line entry point for blobsync.
#
#   blobsync [DIRS]... [--dir DIR1,DIR2] [--container NAME]
#
# Exit status is 0 on success and 1 on any fatal error, with a one-line message on stderr.
####################################################################################################
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from pydantic import ValidationError

from blobsync.core import api
from blobsync.core import configuration as root_cfg
from blobsync.core.cloud_connector import CloudConnector
from blobsync.core.configuration import CloudType
from blobsync.core.sync_orchestrator import SyncOrchestrator

logger = root_cfg.setup_logger("blobsync")


def get_source_dirs(dirs: tuple[Path, ...], dir_list: Optional[str]) -> list[Path]:
    """Positional directories followed by the comma-separated --dir entries; '.' if neither is given."""
    source_dirs = list(dirs)
    if dir_list:
        source_dirs.extend(Path(d.strip()) for d in dir_list.split(",") if d.strip())
    return source_dirs or [Path(".")]


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("dirs", nargs=-1, type=click.Path(path_type=Path))
@click.option("--dir", "dir_list", default=None, help="Comma-separated directory(s) to upload.")
@click.option("--container", default="default", show_default=True, help="Container to upload to.")
@click.option(
    "--commit-policy",
    type=click.Choice([p.value for p in api.CommitPolicy]),
    default=None,
    help="Whether a failed block list commit aborts the run (default from BLOBSYNC_COMMIT_POLICY).",
)
@click.option(
    "--local-cloud",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Sync to this local directory instead of Azure; no credentials needed.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def sync(
    dirs: tuple[Path, ...],
    dir_list: Optional[str],
    container: str,
    commit_policy: Optional[str],
    local_cloud: Optional[Path],
    verbose: bool,
) -> None:
    """Upload the files in DIRS to a blob storage container, skipping files whose MD5 already matches."""
    cc: Optional[CloudConnector] = None
    try:
        settings = root_cfg.load_settings()
        root_cfg.setup_logger("blobsync", logging.DEBUG if verbose else settings.log_level)

        sync_cfg = settings.create_sync_cfg(container, get_source_dirs(dirs, dir_list))
        if commit_policy is not None:
            sync_cfg.update_field("commit_policy", api.CommitPolicy(commit_policy))

        if local_cloud is not None:
            cc = CloudConnector.get_instance(CloudType.LOCAL_EMULATOR, local_cloud=local_cloud)
        else:
            # Credentials are checked before anything touches the network
            keys = root_cfg.require_keys(root_cfg.load_keys())
            cc = CloudConnector.get_instance(CloudType.AZURE, keys=keys)

        report = SyncOrchestrator(cc, sync_cfg).run()
        click.echo(report.summary())
    except api.SyncError as e:
        logger.debug("Sync failed", exc_info=True)
        click.echo(str(e), err=True)
        sys.exit(1)
    except ValidationError as e:
        error = e.errors()[0]
        location = ".".join(str(part) for part in error["loc"])
        click.echo(f"Invalid configuration: {location}: {error['msg']}", err=True)
        sys.exit(1)
    except ValueError as e:
        click.echo(f"Invalid configuration: {e}", err=True)
        sys.exit(1)
    finally:
        if cc is not None:
            cc.shutdown()


def main() -> None:
    sync()


if __name__ == "__main__":
    main()
