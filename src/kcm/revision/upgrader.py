from dataclasses import dataclass
from pathlib import Path
from textwrap import indent
from typing import Callable, Protocol

from loguru import logger

from kcm.errors import CancelledError, KcmError
from kcm.hook import Hook, HookMap, HookType
from kcm.kubectl import KubectlError
from kcm.manifest import Manifest
from kcm.resource import APPLY_ORDER, DELETE_ORDER, Resource, serialize, sort_resources
from kcm.resource.printer import Hint, format_resources, hinted
from kcm.resource.selector import ResourceSelector
from kcm.resource.statefulset import persistent_volume_claims_for_deletion
from kcm.revision import ChangeSet, Revision, RevisionStage
from kcm.tools.executor import CancelToken
from kcm.tools.filechanges import write_file


class Client(Protocol):
    """
    The cluster operations the upgrader needs. Implemented by #Kubectl.
    """

    def apply_manifest(self, manifest: bytes, token: CancelToken | None = None) -> None: ...

    def delete_manifest(self, manifest: bytes, token: CancelToken | None = None) -> None: ...

    def delete_resource(self, selector: ResourceSelector, token: CancelToken | None = None) -> None: ...

    def wait(
        self,
        kind: str,
        name: str,
        namespace: str,
        for_condition: str,
        timeout: float | None = None,
        token: CancelToken | None = None,
    ) -> None: ...


@dataclass
class HookTimeoutError(KcmError):
    hook: Hook
    output: str = ""

    def __str__(self) -> str:
        message = f"waiting for hook {self.hook} failed"
        if self.output.strip():
            message += f": {self.output.strip()}"
        return message


@dataclass
class UpgradeError(KcmError):
    """
    Raised when a revision failed, carrying the stage it failed in. The original error is the `__cause__`.
    """

    manifest: str
    stage: RevisionStage

    def __str__(self) -> str:
        message = f"upgrade of manifest {self.manifest!r} failed in stage {self.stage.value}"
        if self.__cause__ is not None:
            message += f": {self.__cause__}"
        return message


@dataclass
class Upgrader:
    """
    Executes revisions against a cluster.

    For a removal, the pre-delete hooks run, the resources of the manifest are deleted, the post-delete hooks run and
    the PersistentVolumeClaims of StatefulSets with the `delete-pvcs` deletion policy are deleted. The manifest file
    is removed afterwards.

    For an initial installation or an upgrade, the pre-apply hooks run, resources that disappeared are deleted, new
    and changed resources are applied and the post-apply hooks run. The manifest file is written afterwards.
    """

    client: Client
    manifests_dir: Path
    dry_run: bool = False
    include_unchanged: bool = False
    no_hooks: bool = False
    no_save: bool = False
    full_diff: bool = False
    on_stage: Callable[[Revision, RevisionStage], None] | None = None
    """ Called whenever a revision enters a new stage. """

    def upgrade(self, revision: Revision, token: CancelToken | None = None) -> RevisionStage:
        """
        Execute the *revision* and return the stage it ended in, which is #RevisionStage.FINALIZED unless the
        revision had nothing to do, in which case it stays #RevisionStage.PLANNED.

        Raises:
            UpgradeError: If any step failed. Steps after the failing one are not attempted.
        """

        manifest = revision.manifest
        changes = revision.change_set()
        stage = RevisionStage.PLANNED

        if self.full_diff:
            diff = revision.diff()
            if diff:
                logger.info("Changes to manifest {}:\n\n{}", manifest.name, indent(diff, "  "))
            else:
                logger.info("No changes to manifest {}", manifest.name)

        if not revision.is_removal() and not revision.is_initial():
            if not changes.has_resource_changes() and not self.include_unchanged:
                logger.info("Manifest {} is up to date", manifest.name)
                self._save(manifest)
                return stage

        def _enter(next_stage: RevisionStage) -> None:
            nonlocal stage
            stage = next_stage
            if self.on_stage is not None:
                self.on_stage(revision, stage)

        try:
            if revision.is_removal():
                logger.warning("Removing manifest {}", manifest.name)
                _enter(RevisionStage.HOOKS_PRE_RUN)
                self._run_hooks(changes.hooks, HookType.PRE_DELETE, token)
                _enter(RevisionStage.DELETIONS_RUN)
                self._delete(changes.removed, token)
                _enter(RevisionStage.HOOKS_POST_RUN)
                self._run_hooks(changes.hooks, HookType.POST_DELETE, token)
                self._delete_claims(changes.removed, token)
                _enter(RevisionStage.FINALIZED)
                self._remove(manifest)
            else:
                if revision.is_initial():
                    logger.info("Creating manifest {}", manifest.name)
                else:
                    logger.info("Updating manifest {}", manifest.name)
                _enter(RevisionStage.HOOKS_PRE_RUN)
                self._run_hooks(changes.hooks, HookType.PRE_APPLY, token)
                _enter(RevisionStage.DELETIONS_RUN)
                self._delete(changes.removed, token)
                self._delete_claims(changes.removed, token)
                _enter(RevisionStage.APPLY_RUN)
                self._apply(self._resources_to_apply(changes), changes, token)
                _enter(RevisionStage.HOOKS_POST_RUN)
                self._run_hooks(changes.hooks, HookType.POST_APPLY, token)
                _enter(RevisionStage.FINALIZED)
                self._save(manifest)
        except CancelledError:
            raise
        except (KcmError, OSError) as exc:
            raise UpgradeError(manifest.name, stage) from exc

        return stage

    def _resources_to_apply(self, changes: ChangeSet) -> list[Resource]:
        resources = changes.changed + changes.added
        if self.include_unchanged:
            resources += changes.unchanged
        return resources

    def _apply(self, resources: list[Resource], changes: ChangeSet, token: CancelToken | None) -> None:
        if not resources:
            return

        logger.info("{}", format_resources([h for h in changes.hinted() if h.resource in resources]))
        self.client.apply_manifest(serialize(sort_resources(resources, APPLY_ORDER)), token)

    def _delete(self, resources: list[Resource], token: CancelToken | None) -> None:
        if not resources:
            return

        logger.info("{}", format_resources(hinted(resources, Hint.REMOVAL)))
        self.client.delete_manifest(serialize(sort_resources(resources, DELETE_ORDER, unknown_first=True)), token)

    def _delete_claims(self, resources: list[Resource], token: CancelToken | None) -> None:
        claims = persistent_volume_claims_for_deletion(resources)
        if not claims:
            return

        logger.info("Removing {} persistent volume claims", len(claims))
        for claim in claims:
            logger.info("  - {}", claim)
            self.client.delete_resource(claim, token)

    def _run_hooks(self, hooks: HookMap, hook_type: HookType, token: CancelToken | None) -> None:
        """
        Run the hooks of a type one after another. Every hook is deleted before it is applied so that its Job is
        recreated, then waited for and optionally deleted again.
        """

        if self.no_hooks:
            return

        selected = hooks.get(hook_type, [])
        if not selected:
            return

        logger.info("Executing {} {} hooks", len(selected), hook_type.value)
        for hook in selected:
            logger.info("  {}", hook)
            content = serialize([hook.resource])
            self.client.delete_manifest(content, token)
            self.client.apply_manifest(content, token)

            if hook.wait_for:
                resource = hook.resource
                try:
                    self.client.wait(
                        resource.kind, resource.name, resource.namespace, hook.wait_for, hook.wait_timeout, token
                    )
                except KubectlError as exc:
                    raise HookTimeoutError(hook, exc.output) from exc

                if hook.delete_after_completion:
                    self.client.delete_manifest(content, token)

    def _save(self, manifest: Manifest) -> None:
        if self.no_save:
            return
        write_file(self.manifests_dir / manifest.filename, manifest.content(), self.dry_run)

    def _remove(self, manifest: Manifest) -> None:
        path = self.manifests_dir / manifest.filename
        if self.dry_run or self.no_save:
            logger.info("Would remove {} (dry run)" if self.dry_run else "Keeping {}", path)
            return
        if path.exists():
            logger.info("Removing {}", path)
            path.unlink()
