"""
The cluster manager ties provisioner, renderer and the revision engine together. Provisioning a cluster updates the
infrastructure first and then rolls out the manifests rendered from the merged values; destroying it works the other
way around.
"""

from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from kcm.credentials import CredentialSource, Credentials, EmptyCredentialsError
from kcm.deletions import DeletionLedger, DeletionPhase, deletion_ledger
from kcm.kubectl import Kubectl
from kcm.manifest import Manifest, read_dir
from kcm.provisioner import Provisioner
from kcm.renderer import Renderer
from kcm.revision import Revision, build_revisions
from kcm.revision.upgrader import Upgrader
from kcm.tools.executor import CancelToken, Executor
from kcm.values import Values, deep_merge, load_values, save_values

DIR_MODE = 0o775


@dataclass
class ManagerOptions:
    dry_run: bool = False
    """ Log what would be done without changing the infrastructure, the cluster or any file. """

    values: Path = Path("values.yaml")
    manifests_dir: Path = Path("manifests")
    deletions: Path = Path("deletions.yaml")
    only_manifest: bool = False
    """ Skip infrastructure changes, only roll out manifests. """

    skip_manifests: bool = False
    """ Only change the infrastructure, leave the manifests alone. """

    include_unchanged: bool = False
    """ Also apply manifests and resources without changes. When deleting, manifests are rendered again instead of
    read from the manifests directory. """

    no_hooks: bool = False
    no_save: bool = False
    full_diff: bool = False


@dataclass
class ClusterManager:
    credential_source: CredentialSource
    provisioner: Provisioner
    renderer: Renderer
    executor: Executor

    def provision(self, options: ManagerOptions, token: CancelToken | None = None) -> None:
        """
        Create or update the infrastructure and roll out the manifests. In dry-run mode the provisioner only shows
        the changes it would make.
        """

        if not options.only_manifest:
            if options.dry_run:
                logger.info("Reconciling infrastructure")
                self.provisioner.reconcile(token)
            else:
                logger.info("Provisioning infrastructure")
                self.provisioner.provision(token)

        self.apply_manifests(options, token)

    def apply_manifests(self, options: ManagerOptions, token: CancelToken | None = None) -> None:
        with deletion_ledger(options.deletions, options.dry_run) as ledger:
            values = self._read_values(options, token)
            credentials = self._read_credentials(options, token)
            save_values(options.values, values, options.dry_run or options.no_save)

            if options.skip_manifests:
                logger.info("Skipping manifests")
                return

            next_manifests = self._render(values, token)
            current_manifests = read_dir(options.manifests_dir)
            revisions = build_revisions(current_manifests, next_manifests)

            kubectl = Kubectl(credentials, self.executor, dry_run=options.dry_run)
            if not options.dry_run:
                options.manifests_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
                kubectl.wait_for_cluster(token)

            upgrader = self._upgrader(kubectl, options)
            ledger.run(DeletionPhase.PRE_APPLY, kubectl, token)
            self._upgrade(upgrader, revisions, token)
            ledger.run(DeletionPhase.POST_APPLY, kubectl, token)

    def delete_manifests(self, options: ManagerOptions, token: CancelToken | None = None) -> None:
        """
        Delete all manifests from the cluster, in the reverse order they were applied in.
        """

        with deletion_ledger(options.deletions, options.dry_run) as ledger:
            self._delete_manifests(ledger, options, token)

    def destroy(self, options: ManagerOptions, token: CancelToken | None = None) -> None:
        if not options.skip_manifests:
            self.delete_manifests(options, token)

        if options.only_manifest:
            return

        if options.dry_run:
            logger.warning("Would destroy cluster infrastructure (dry run)")
            return

        logger.warning("Destroying cluster infrastructure")
        self.provisioner.destroy(token)

    def _delete_manifests(self, ledger: DeletionLedger, options: ManagerOptions, token: CancelToken | None) -> None:
        if options.include_unchanged:
            # Manifests that are already gone from the manifests directory can only be deleted if rendered again.
            manifests = self._render(self._read_values(options, token), token)
        else:
            manifests = read_dir(options.manifests_dir)

        revisions = list(reversed(build_revisions(manifests, [])))
        credentials = self._read_credentials(options, token)

        kubectl = Kubectl(credentials, self.executor, dry_run=options.dry_run)
        if not options.dry_run:
            kubectl.wait_for_cluster(token)

        self._upgrade(self._upgrader(kubectl, options), revisions, token)
        ledger.run(DeletionPhase.PRE_DESTROY, kubectl, token)

    def _upgrade(self, upgrader: Upgrader, revisions: list[Revision], token: CancelToken | None) -> None:
        for revision in revisions:
            if token is not None:
                token.raise_if_cancelled()
            upgrader.upgrade(revision, token)

    def _upgrader(self, kubectl: Kubectl, options: ManagerOptions) -> Upgrader:
        return Upgrader(
            kubectl,
            options.manifests_dir,
            dry_run=options.dry_run,
            include_unchanged=options.include_unchanged,
            no_hooks=options.no_hooks,
            no_save=options.no_save,
            full_diff=options.full_diff,
        )

    def _read_values(self, options: ManagerOptions, token: CancelToken | None) -> Values:
        """
        Read the values file and merge the outputs of the provisioner into it. Outputs take precedence.
        """

        values = load_values(options.values)
        outputs = self.provisioner.fetch(token)
        if outputs:
            logger.info("Merging {} values from provisioner", len(outputs))
            values = deep_merge(values, outputs)
        return values

    def _read_credentials(self, options: ManagerOptions, token: CancelToken | None) -> Credentials:
        credentials = self.credential_source.get_credentials(token)
        if credentials.is_empty():
            if not options.dry_run:
                raise EmptyCredentialsError()
            logger.warning("No cluster credentials available, continuing because of dry run")
        logger.debug("Using cluster credentials {}", credentials.redacted())
        return credentials

    def _render(self, values: Values, token: CancelToken | None) -> list[Manifest]:
        """
        Render and parse the manifests. Blank manifests are left out, so a manifest that renders to nothing is
        removed from the cluster.
        """

        manifests = []
        for rendered in self.renderer.render_manifests(values, token):
            manifest = Manifest.from_content(rendered.name, rendered.content)
            if manifest.is_blank():
                logger.debug("Skipping blank manifest {}", manifest.name)
                continue
            manifests.append(manifest)
        return manifests
