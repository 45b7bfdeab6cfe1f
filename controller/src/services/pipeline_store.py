"""
Pipeline store - transactional access to builds, steps, releases and deploys.

Every status change is a guarded UPDATE (``WHERE status IN expected``)
checked against the transition tables; the loser of a race gets
StaleState and must re-read.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from functools import lru_cache
from typing import Iterable, List, Optional, Sequence, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload, sessionmaker

from controller.src.db.database import get_engine, make_session_factory
from controller.src.errors import (
    AppNotFound,
    BuildNotFound,
    DeployNotFound,
    IllegalTransition,
    InvalidInput,
    NotFound,
    ReleaseInUse,
    ReleaseNotFound,
    StaleState,
    VersionConflict,
)
from controller.src.models.db import (
    App,
    BuildJob,
    BuildLog,
    BuildStep,
    Deploy,
    Release,
    as_utc,
    utcnow,
)
from controller.src.models.status import (
    BuildStatus,
    BuildTrigger,
    DeployStatus,
    ReleaseStatus,
    is_terminal,
    transitions_for,
)
from controller.src.models.step import RunnerInfo, SourceRef

logger = logging.getLogger(__name__)

ORPHANED_MESSAGE = "orphaned: no progress within timeout"

def _as_set(expected) -> frozenset:
    if isinstance(expected, (list, tuple, set, frozenset)):
        return frozenset(expected)
    return frozenset({expected})

class PipelineStore:
    """Source of truth for pipeline state. Holds no status in memory."""

    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    @contextmanager
    def transaction(self):
        """One transaction scoped to a single entity graph."""
        with self._sessions.begin() as session:
            yield session

    # ---------- guarded transitions ----------

    def _transition(
        self,
        session: Session,
        model,
        row_id: int,
        expected,
        new,
        values: dict,
        not_found=NotFound,
    ):
        expected = _as_set(expected)
        table = transitions_for(type(new))
        for status in expected:
            if new not in table[status]:
                raise IllegalTransition(
                    f"{model.__tablename__} {row_id}: {status.value} -> {new.value} is not allowed"
                )

        values = dict(values)
        values["status"] = new
        now = utcnow()
        if hasattr(model, "started_at") and new in (BuildStatus.RUNNING, DeployStatus.RUNNING):
            values.setdefault("started_at", now)
        if hasattr(model, "finished_at") and is_terminal(new):
            values.setdefault("finished_at", now)
        if hasattr(model, "updated_at"):
            values.setdefault("updated_at", now)

        result = session.execute(
            update(model)
            .where(model.id == row_id)
            .where(model.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = session.execute(
                select(model.status).where(model.id == row_id)
            ).scalar_one_or_none()
            if current is None:
                raise not_found(f"{model.__tablename__} {row_id} not found")
            raise StaleState(
                model.__tablename__, row_id, {s.value for s in expected}, current.value
            )

        logger.debug(f"{model.__tablename__} {row_id} -> {new.value}")
        return session.get(model, row_id, populate_existing=True)

    def transition_build(self, build_id: int, expected, new: BuildStatus, **values) -> BuildJob:
        with self.transaction() as session:
            return self._transition(session, BuildJob, build_id, expected, new, values, BuildNotFound)

    def transition_step(self, step_id: int, expected, new: BuildStatus, **values) -> BuildStep:
        with self.transaction() as session:
            step = session.get(BuildStep, step_id)
            if step is None:
                raise NotFound(f"build_steps {step_id} not found")
            if new == BuildStatus.RUNNING:
                self._check_build_running(session, step)
                self._check_predecessors_terminal(session, step)
            return self._transition(session, BuildStep, step_id, expected, new, values)

    def transition_deploy(self, deploy_id: int, expected, new: DeployStatus, **values) -> Deploy:
        with self.transaction() as session:
            return self._transition(session, Deploy, deploy_id, expected, new, values, DeployNotFound)

    def _check_build_running(self, session: Session, step: BuildStep):
        # Locks the job row; cancel and orphan sweeps take the same lock first
        status = session.execute(
            select(BuildJob.status).where(BuildJob.id == step.build_id).with_for_update()
        ).scalar_one()
        if status != BuildStatus.RUNNING:
            raise StaleState("build_jobs", step.build_id, {BuildStatus.RUNNING.value}, status.value)

    def _check_predecessors_terminal(self, session: Session, step: BuildStep):
        open_before = session.execute(
            select(func.count(BuildStep.id))
            .where(BuildStep.build_id == step.build_id)
            .where(BuildStep.position < step.position)
            .where(BuildStep.status.in_([BuildStatus.PENDING, BuildStatus.RUNNING]))
        ).scalar_one()
        if open_before:
            raise IllegalTransition(
                f"Step {step.position} of build {step.build_id} cannot start before earlier steps finish"
            )

    # ---------- apps ----------

    def get_app(self, app_id: int) -> App:
        with self.transaction() as session:
            app = session.get(App, app_id)
            if app is None or app.deleted_at is not None:
                raise AppNotFound(f"App {app_id} not found")
            return app

    def find_apps_by_repo_url(self, repo_url: str) -> List[App]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(App)
                    .where(App.repo_url == repo_url)
                    .where(App.deleted_at.is_(None))
                ).scalars()
            )

    # ---------- builds ----------

    def create_build(
        self,
        app_id: int,
        source: SourceRef,
        trigger: BuildTrigger,
        step_names: Sequence[str],
        triggered_by: Optional[int] = None,
        runner: Optional[RunnerInfo] = None,
    ) -> BuildJob:
        """Insert the job and all of its steps, or nothing."""
        if not step_names:
            raise InvalidInput("A build needs at least one step")

        with self.transaction() as session:
            app = session.get(App, app_id)
            if app is None or app.deleted_at is not None:
                raise AppNotFound(f"App {app_id} not found")

            job = BuildJob(
                app_id=app_id,
                status=BuildStatus.PENDING,
                trigger=trigger,
                triggered_by=triggered_by,
                commit_sha=source.commit_sha,
                branch=source.branch,
                tag=source.tag,
                runner_name=runner.name if runner else None,
                runner_type=runner.type if runner else None,
            )
            job.steps = [
                BuildStep(position=position, name=name, status=BuildStatus.PENDING)
                for position, name in enumerate(step_names, start=1)
            ]
            session.add(job)
            session.flush()
            logger.info(f"Created build {job.id} for app {app_id} with {len(step_names)} steps")
            return job

    def get_build(self, build_id: int) -> BuildJob:
        with self.transaction() as session:
            job = session.execute(
                select(BuildJob)
                .options(selectinload(BuildJob.steps))
                .where(BuildJob.id == build_id)
            ).scalar_one_or_none()
            if job is None:
                raise BuildNotFound(f"Build {build_id} not found")
            return job

    def get_build_status(self, build_id: int) -> BuildStatus:
        with self.transaction() as session:
            status = session.execute(
                select(BuildJob.status).where(BuildJob.id == build_id)
            ).scalar_one_or_none()
            if status is None:
                raise BuildNotFound(f"Build {build_id} not found")
            return status

    def list_steps(self, build_id: int) -> List[BuildStep]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(BuildStep)
                    .where(BuildStep.build_id == build_id)
                    .order_by(BuildStep.position)
                ).scalars()
            )

    def get_step(self, step_id: int) -> BuildStep:
        with self.transaction() as session:
            step = session.get(BuildStep, step_id)
            if step is None:
                raise NotFound(f"build_steps {step_id} not found")
            return step

    def list_builds(self, app_id: int, limit: int = 20, offset: int = 0) -> List[BuildJob]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(BuildJob)
                    .options(selectinload(BuildJob.steps))
                    .where(BuildJob.app_id == app_id)
                    .order_by(BuildJob.created_at.desc(), BuildJob.id.desc())
                    .limit(limit)
                    .offset(offset)
                ).scalars()
            )

    def set_build_image(self, build_id: int, image_ref: str):
        with self.transaction() as session:
            session.execute(
                update(BuildJob)
                .where(BuildJob.id == build_id)
                .values(image_ref=image_ref)
                .execution_options(synchronize_session=False)
            )

    def cancel_build(self, build_id: int) -> BuildJob:
        """
        Cancel the job and its running step together.
        Already-terminal jobs are returned unchanged.
        """
        try:
            with self.transaction() as session:
                job = session.get(BuildJob, build_id, with_for_update=True)
                if job is None:
                    raise BuildNotFound(f"Build {build_id} not found")
                if is_terminal(job.status):
                    return job
                now = utcnow()
                session.execute(
                    update(BuildStep)
                    .where(BuildStep.build_id == build_id)
                    .where(BuildStep.status == BuildStatus.RUNNING)
                    .values(status=BuildStatus.CANCELED, finished_at=now)
                    .execution_options(synchronize_session=False)
                )
                job = self._transition(
                    session, BuildJob, build_id, job.status, BuildStatus.CANCELED,
                    {"finished_at": now}, BuildNotFound,
                )
                logger.info(f"Canceled build {build_id}")
                return job
        except StaleState:
            # Lost to a concurrent finish; a terminal job makes cancel a no-op
            job = self.get_build(build_id)
            if is_terminal(job.status):
                return job
            raise

    def fail_build(self, build_id: int, step_id: Optional[int], message: str) -> BuildJob:
        """Fail the running step and the job in one transaction."""
        with self.transaction() as session:
            now = utcnow()
            if step_id is not None:
                self._transition(
                    session, BuildStep, step_id, BuildStatus.RUNNING, BuildStatus.FAILED,
                    {"error_message": message, "finished_at": now},
                )
            return self._transition(
                session, BuildJob, build_id, BuildStatus.RUNNING, BuildStatus.FAILED,
                {"error_message": message, "finished_at": now}, BuildNotFound,
            )

    def fail_orphaned_build(self, build_id: int, message: str = ORPHANED_MESSAGE) -> Optional[BuildJob]:
        """
        Resolve a running build whose worker vanished.
        Returns None when the build is no longer running.
        """
        try:
            with self.transaction() as session:
                now = utcnow()
                job = self._transition(
                    session, BuildJob, build_id, BuildStatus.RUNNING, BuildStatus.FAILED,
                    {"error_message": message, "finished_at": now}, BuildNotFound,
                )
                session.execute(
                    update(BuildStep)
                    .where(BuildStep.build_id == build_id)
                    .where(BuildStep.status == BuildStatus.RUNNING)
                    .values(status=BuildStatus.FAILED, error_message=message, finished_at=now)
                    .execution_options(synchronize_session=False)
                )
                return job
        except StaleState:
            return None

    def list_running_builds(self) -> List[BuildJob]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(BuildJob)
                    .where(BuildJob.status == BuildStatus.RUNNING)
                    .order_by(BuildJob.created_at)
                ).scalars()
            )

    def last_build_activity(self, build_id: int) -> Optional[datetime]:
        """Latest timestamp the build itself wrote: start, step moves, log chunks."""
        with self.transaction() as session:
            job_started = session.execute(
                select(BuildJob.started_at).where(BuildJob.id == build_id)
            ).scalar_one_or_none()
            step_times = session.execute(
                select(func.max(BuildStep.started_at), func.max(BuildStep.finished_at))
                .where(BuildStep.build_id == build_id)
            ).one()
            last_chunk = session.execute(
                select(func.max(BuildLog.created_at)).where(BuildLog.build_id == build_id)
            ).scalar_one_or_none()

        candidates = [as_utc(t) for t in (job_started, *step_times, last_chunk) if t is not None]
        return max(candidates) if candidates else None

    # ---------- releases ----------

    def _insert_release(
        self,
        session: Session,
        app_id: int,
        version: str,
        build_id: Optional[int],
        source: Optional[SourceRef],
        image_ref: Optional[str],
        changelog: Optional[str],
        created_by: Optional[int],
    ) -> Release:
        if not version or not version.strip():
            raise InvalidInput("Release version must not be empty")
        source = source or SourceRef()

        existing = session.execute(
            select(Release.id)
            .where(Release.app_id == app_id)
            .where(Release.version == version)
        ).scalar_one_or_none()
        if existing is not None:
            raise VersionConflict(app_id, version, build_id)

        release = Release(
            app_id=app_id,
            version=version,
            commit_sha=source.commit_sha,
            branch=source.branch,
            tag=source.tag,
            image_ref=image_ref,
            changelog=changelog,
            created_by=created_by,
            status=ReleaseStatus.PENDING,
        )
        session.add(release)
        session.flush()
        return release

    def _link_build(self, session: Session, build_id: int, release_id: int):
        session.execute(
            update(BuildJob)
            .where(BuildJob.id == build_id)
            .values(release_id=release_id)
            .execution_options(synchronize_session=False)
        )

    def create_release(
        self,
        app_id: int,
        version: str,
        build_id: Optional[int] = None,
        source: Optional[SourceRef] = None,
        image_ref: Optional[str] = None,
        changelog: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> Release:
        """Insert a pending release and link it to the build that produced it."""
        try:
            with self.transaction() as session:
                release = self._insert_release(
                    session, app_id, version, build_id, source, image_ref, changelog, created_by
                )
                if build_id is not None:
                    self._link_build(session, build_id, release.id)
                logger.info(f"Created release {version} ({release.id}) for app {app_id}")
                return release
        except IntegrityError:
            # Concurrent insert of the same version won the unique constraint
            raise VersionConflict(app_id, version, build_id)

    def publish_release(
        self,
        app_id: int,
        version: str,
        build_id: int,
        source: Optional[SourceRef] = None,
        image_ref: Optional[str] = None,
        changelog: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> Release:
        """
        Insert the release, finalize it as built and link the build in one
        transaction. Either the build ends up with a deployable release or
        nothing is written.
        """
        try:
            with self.transaction() as session:
                release = self._insert_release(
                    session, app_id, version, build_id, source, image_ref, changelog, created_by
                )
                release = self._transition(
                    session, Release, release.id, ReleaseStatus.PENDING, ReleaseStatus.BUILT,
                    {}, ReleaseNotFound,
                )
                self._link_build(session, build_id, release.id)
                logger.info(f"Published release {version} ({release.id}) of build {build_id}")
                return release
        except IntegrityError:
            raise VersionConflict(app_id, version, build_id)

    def finalize_release(self, release_id: int, status: ReleaseStatus) -> Release:
        with self.transaction() as session:
            return self._transition(
                session, Release, release_id, ReleaseStatus.PENDING, status, {}, ReleaseNotFound
            )

    def get_release(self, release_id: int) -> Release:
        with self.transaction() as session:
            release = session.get(Release, release_id)
            if release is None:
                raise ReleaseNotFound(f"Release {release_id} not found")
            return release

    def list_releases(self, app_id: int) -> List[Release]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(Release)
                    .where(Release.app_id == app_id)
                    .order_by(Release.created_at.desc(), Release.id.desc())
                ).scalars()
            )

    def delete_release(self, release_id: int):
        """Rejected while any deploy still references the release."""
        try:
            with self.transaction() as session:
                release = session.get(Release, release_id)
                if release is None:
                    raise ReleaseNotFound(f"Release {release_id} not found")
                deploys = session.execute(
                    select(func.count(Deploy.id)).where(Deploy.release_id == release_id)
                ).scalar_one()
                if deploys:
                    raise ReleaseInUse(f"Release {release_id} is referenced by {deploys} deploy(s)")
                session.delete(release)
        except IntegrityError:
            raise ReleaseInUse(f"Release {release_id} is referenced by a deploy")
        logger.info(f"Deleted release {release_id}")

    # ---------- deploys ----------

    def create_deploy(
        self,
        release: Release,
        environment: str,
        target_cluster: Optional[str] = None,
        target_region: Optional[str] = None,
        triggered_by: Optional[int] = None,
    ) -> Deploy:
        with self.transaction() as session:
            deploy = Deploy(
                app_id=release.app_id,
                release_id=release.id,
                environment=environment,
                status=DeployStatus.PENDING,
                target_cluster=target_cluster,
                target_region=target_region,
                triggered_by=triggered_by,
            )
            session.add(deploy)
            session.flush()
            logger.info(f"Created deploy {deploy.id} of release {release.id} to {environment}")
            return deploy

    def get_deploy(self, deploy_id: int) -> Deploy:
        with self.transaction() as session:
            deploy = session.get(Deploy, deploy_id)
            if deploy is None:
                raise DeployNotFound(f"Deploy {deploy_id} not found")
            return deploy

    def list_deploys(
        self,
        app_id: int,
        environment: Optional[str] = None,
        statuses: Optional[Iterable[DeployStatus]] = None,
    ) -> List[Deploy]:
        with self.transaction() as session:
            query = select(Deploy).where(Deploy.app_id == app_id)
            if environment is not None:
                query = query.where(Deploy.environment == environment)
            if statuses is not None:
                query = query.where(Deploy.status.in_(list(statuses)))
            query = query.order_by(Deploy.created_at.desc(), Deploy.id.desc())
            return list(session.execute(query).scalars())

    def list_running_deploys(self) -> List[Deploy]:
        with self.transaction() as session:
            return list(
                session.execute(
                    select(Deploy)
                    .where(Deploy.status == DeployStatus.RUNNING)
                    .order_by(Deploy.created_at)
                ).scalars()
            )

    def fail_orphaned_deploy(self, deploy_id: int, message: str = ORPHANED_MESSAGE) -> Optional[Deploy]:
        try:
            return self.transition_deploy(
                deploy_id, DeployStatus.RUNNING, DeployStatus.FAILED, error_message=message
            )
        except StaleState:
            return None

@lru_cache()
def get_store() -> PipelineStore:
    return PipelineStore(make_session_factory(get_engine()))
