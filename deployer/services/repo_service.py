"""
Repo Service
============
Acquires the source checkout for a run on the host machine.

Philosophy:
    - Full history, never shallow: the version tag is derived from the
      revision, and later stages (static analysis blame data) need history.
    - One workspace per run: <workspace_root>/<run_id>/<repo>. Stages of the
      same run share it; concurrent runs never touch each other's tree.
    - Within a run the checkout is reused and re-pointed at the revision with
      a detached checkout.
    - The checkout is verified: HEAD must equal the requested revision.
"""
import os
import shutil
import subprocess
import logging

from deployer.core.errors import SourceAcquisitionError

logger = logging.getLogger(__name__)


def get_repo_name(repo_url: str) -> str:
    """Extract repository name from URL."""
    # Handle git@github.com:org/repo.git or https://github.com/org/repo
    name = repo_url.rstrip("/").split("/")[-1]
    if name.endswith(".git"):
        name = name[:-4]
    return name


def _auth_url(repo_url: str, github_token: str) -> str:
    if github_token and "github.com" in repo_url and repo_url.startswith("https://"):
        return repo_url.replace("https://", f"https://x-access-token:{github_token}@")
    return repo_url


def _git(args: list, cwd: str) -> str:
    res = subprocess.run(
        ["git", *args],
        cwd=cwd,
        check=True,
        capture_output=True,
        text=True,
    )
    return res.stdout.strip()


def _is_shallow(dest_path: str) -> bool:
    return _git(["rev-parse", "--is-shallow-repository"], dest_path) == "true"


def run_workspace(workspace_root: str, run_id: str) -> str:
    """Directory holding every checkout made for ``run_id``."""
    if not run_id or os.sep in run_id or run_id in (".", ".."):
        raise ValueError(f"Invalid run id: {run_id!r}")
    return os.path.abspath(os.path.join(workspace_root, run_id))


def release_workspace(workspace_root: str, run_id: str) -> None:
    """Remove the run's checkouts. Safe to call when nothing was cloned."""
    path = run_workspace(workspace_root, run_id)
    if os.path.exists(path):
        shutil.rmtree(path)
        logger.info("Released workspace %s", path)


def acquire_source(
    repo_url: str,
    revision: str,
    workspace_root: str,
    github_token: str = "",
    run_id: str = "",
) -> str:
    """
    Clone (or refresh) a repository at full depth and check out ``revision``.

    Parameters
    ----------
    repo_url : str
        The repository URL to clone.
    revision : str
        Commit SHA to check out.
    workspace_root : str
        Directory holding all checkouts.
    github_token : str
        Optional GitHub token for private repos.
    run_id : str
        Scopes the checkout to <workspace_root>/<run_id>/. Without it the
        checkout sits directly under ``workspace_root``.

    Returns
    -------
    str
        Absolute path to the checkout.

    Raises
    ------
    SourceAcquisitionError
        If any git operation fails or HEAD does not match ``revision``.
    """
    base = run_workspace(workspace_root, run_id) if run_id else os.path.abspath(workspace_root)
    os.makedirs(base, exist_ok=True)
    dest_path = os.path.join(base, get_repo_name(repo_url))
    auth_url = _auth_url(repo_url, github_token)

    try:
        if os.path.isdir(os.path.join(dest_path, ".git")):
            logger.info("Workspace exists at %s, fetching", dest_path)
            if _is_shallow(dest_path):
                _git(["fetch", "--unshallow", "--tags", auth_url], dest_path)
            else:
                _git(["fetch", "--tags", auth_url], dest_path)
        else:
            logger.info("Cloning %s into %s (full history)", repo_url, dest_path)
            subprocess.run(
                ["git", "clone", auth_url, dest_path],
                check=True,
                capture_output=True,
                text=True,
            )

        _git(["checkout", "--force", "--detach", revision], dest_path)
        head = _git(["rev-parse", "HEAD"], dest_path)

    except subprocess.CalledProcessError as e:
        # stderr may echo the auth URL
        stderr = (e.stderr or "").replace(github_token, "***") if github_token else (e.stderr or "")
        logger.error("Source acquisition failed: %s", stderr)
        raise SourceAcquisitionError(
            f"git {e.cmd[1] if len(e.cmd) > 1 else ''} failed",
            details={"repo": get_repo_name(repo_url), "stderr": stderr.strip()},
        ) from e

    if not head.startswith(revision):
        raise SourceAcquisitionError(
            "Checked-out HEAD does not match requested revision",
            details={"expected": revision, "head": head},
        )

    logger.info("Checked out %s at %s", revision[:7], dest_path)
    return dest_path
