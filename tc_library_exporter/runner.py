"""
Build-and-export run.

The run is a straight sequence of steps.  Each step either returns what
the next step needs or raises :class:`RunnerError` carrying the exit code
of the failure; :func:`run` is the only place that turns an outcome into
an :class:`ExitCode`.

Stages:

1. Verify input (solution path, PLC project name, library path).
2. Find the TwinCAT project in the solution and the TwinCAT version it
   was saved with.
3. Start the development environment with the right TwinCAT version
   (forced version, else the pinned project version, else the latest).
4. Load the solution and check it contains the PLC project.
5. Optionally configure tasks and add compiler defines.
6. Clean and build the solution; any build error stops the run.
7. Check all objects of the PLC project.
8. Save the PLC project as a library.

The COM message filter and the development environment are scoped
resources: both are released on every path, including Ctrl+C and the
overall timeout.
"""

from __future__ import annotations

import _thread
import contextlib
import logging
import os
import threading
import time
from typing import Callable, Iterator, Optional

from lxml import etree

from . import __version__
from .automation import AutomationInterface, PlcAutomation
from .message_filter import MessageFilter
from .models import BuildDiagnostics, ExitCode, RunnerConfig, RunnerError
from .solution import find_twincat_project_file, get_twincat_version
from .vs_instance import DevelopmentSession, VisualStudioInstance
from .xml_utils import is_twincat_project_pinned

logger = logging.getLogger(__name__)

LIBRARY_EXTENSIONS = (".library", ".compiled-library")

# Seconds the main thread gets to unwind after a timeout before the
# process is killed.
TIMEOUT_GRACE_SECONDS = 30.0

# The Error List is filled asynchronously after Build() returns.
ERROR_LIST_SETTLE_SECONDS = 0.1

SessionFactory = Callable[[str, str, Optional[str]], DevelopmentSession]
AutomationFactory = Callable[[object, str], PlcAutomation]


# ===================================================================
# Timeout
# ===================================================================

class Watchdog:
    """Stops the run when it exceeds *timeout_seconds*.

    On expiry the main thread is interrupted so the usual cleanup runs.  A
    DTE build can hang inside a COM call where the interrupt is never
    delivered, so if the main thread is still running after
    *grace_seconds* the process is terminated with ``ExitCode.TIMEOUT``.
    """

    def __init__(self, timeout_seconds: Optional[float],
                 grace_seconds: float = TIMEOUT_GRACE_SECONDS):
        self.timeout_seconds = timeout_seconds
        self.grace_seconds = grace_seconds
        self.fired = False
        self._timer: Optional[threading.Timer] = None
        self._kill_timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._cancelled = False

    def start(self) -> None:
        if not self.timeout_seconds:
            return
        with self._lock:
            self._cancelled = False
            self._timer = threading.Timer(self.timeout_seconds, self._expire)
            self._timer.daemon = True
            self._timer.start()
        logger.debug("Timeout set to %.0f seconds", self.timeout_seconds)

    def cancel(self) -> None:
        """Stop both timers.  Safe to call more than once."""
        with self._lock:
            self._cancelled = True
            timers = (self._timer, self._kill_timer)
            self._timer = None
            self._kill_timer = None
        for timer in timers:
            if timer is not None:
                timer.cancel()

    def _expire(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self.fired = True
            logger.error("Timeout occurred, killing process(es) ...")
            self._kill_timer = threading.Timer(self.grace_seconds, self._force_exit)
            self._kill_timer.daemon = True
            self._kill_timer.start()
            _thread.interrupt_main()

    def _force_exit(self) -> None:
        logger.error("Run did not stop within %.0f seconds, terminating",
                     self.grace_seconds)
        logging.shutdown()
        os._exit(int(ExitCode.TIMEOUT))

    def __enter__(self) -> 'Watchdog':
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()


# ===================================================================
# Steps
# ===================================================================

def validate_config(config: RunnerConfig) -> None:
    if not config.solution_path:
        raise RunnerError(ExitCode.SOLUTION_PATH_NOT_PROVIDED,
                          "Visual studio solution path not provided!")
    if not os.path.isfile(config.solution_path):
        raise RunnerError(ExitCode.SOLUTION_PATH_NOT_FOUND,
                          f"Visual studio solution {config.solution_path} does not exist!")
    if not config.plc_project_name:
        raise RunnerError(ExitCode.ARGUMENT_ERROR, "PLC project name not provided!")
    if not config.library_path:
        raise RunnerError(ExitCode.ARGUMENT_ERROR, "Library path not provided!")
    if not config.library_path.lower().endswith(LIBRARY_EXTENSIONS):
        raise RunnerError(
            ExitCode.ARGUMENT_ERROR,
            f"Library path {config.library_path} must end with "
            f"{' or '.join(LIBRARY_EXTENSIONS)}",
        )


def log_basic_info(config: RunnerConfig) -> None:
    logger.info("tc-library-export version: %s", __version__)
    logger.info("Visual Studio solution path: %s", config.solution_path)
    logger.info("PLC project: %s", config.plc_project_name)
    logger.info("Library path: %s", config.library_path)


def resolve_project_file(solution_path: str) -> str:
    try:
        tsproj_path = find_twincat_project_file(solution_path)
    except OSError as e:
        raise RunnerError(ExitCode.TWINCAT_PROJECT_FILE_NOT_FOUND,
                          f"Could not read solution {solution_path}: {e}") from e
    if not tsproj_path:
        raise RunnerError(
            ExitCode.TWINCAT_PROJECT_FILE_NOT_FOUND,
            "Did not find TwinCAT project file in solution. Is this a TwinCAT project?",
        )
    if not os.path.isfile(tsproj_path):
        raise RunnerError(ExitCode.TWINCAT_PROJECT_FILE_NOT_FOUND,
                          f"TwinCAT project file {tsproj_path} does not exist!")
    return tsproj_path


def resolve_twincat_version(tsproj_path: str) -> str:
    try:
        tc_version = get_twincat_version(tsproj_path)
    except (OSError, etree.XMLSyntaxError) as e:
        raise RunnerError(ExitCode.TWINCAT_VERSION_NOT_FOUND,
                          f"Could not read TwinCAT project file {tsproj_path}: {e}") from e
    if not tc_version:
        raise RunnerError(ExitCode.TWINCAT_VERSION_NOT_FOUND,
                          "Did not find TwinCAT version in TwinCAT project file")
    logger.info("TwinCAT project version: %s", tc_version)
    return tc_version


def _dte_load_error(e: Exception) -> RunnerError:
    logger.debug("DTE load failure", exc_info=True)
    return RunnerError(
        ExitCode.ERROR_LOADING_DTE,
        "Error loading VS DTE. Is the correct version of Visual Studio and "
        f"TwinCAT installed? ({e})",
    )


def create_session(
    config: RunnerConfig,
    tc_version: str,
    session_factory: SessionFactory,
) -> DevelopmentSession:
    try:
        return session_factory(config.solution_path, tc_version, config.forced_tc_version)
    except Exception as e:
        raise _dte_load_error(e) from e


@contextlib.contextmanager
def _closing(session: DevelopmentSession) -> Iterator[DevelopmentSession]:
    """Close *session* on exit; a failing close never hides the run's outcome."""
    try:
        yield session
    finally:
        try:
            session.close()
        except Exception as e:
            logger.warning("Could not close the development environment: %s", e)


def load_environment(session: DevelopmentSession, tsproj_path: str) -> None:
    try:
        is_pinned = is_twincat_project_pinned(tsproj_path)
        logger.info("Version is pinned: %s", is_pinned)
        session.load(is_pinned)
    except Exception as e:
        raise _dte_load_error(e) from e


def load_solution(session: DevelopmentSession) -> None:
    try:
        session.load_solution()
    except Exception as e:
        logger.debug("Solution load failure", exc_info=True)
        raise RunnerError(
            ExitCode.ERROR_LOADING_SOLUTION,
            "Error loading the solution. Try to open it manually and make sure "
            f"it's possible to open and that all dependencies are working ({e})",
        ) from e

    if session.get_visual_studio_version() is None:
        raise RunnerError(ExitCode.ERROR_FINDING_VS_VERSION,
                          "Did not find Visual Studio version in Visual Studio solution file")


def find_plc_project(
    session: DevelopmentSession,
    config: RunnerConfig,
    automation_factory: AutomationFactory,
) -> PlcAutomation:
    try:
        automation = automation_factory(session.get_project(), config.plc_project_name)
        count = automation.plc_project_count
        present = count > 0 and automation.has_plc_project()
    except Exception as e:
        logger.debug("PLC project lookup failure", exc_info=True)
        raise RunnerError(ExitCode.NO_PLC_PROJECT,
                          f"Could not access the PLC configuration: {e}") from e
    if count <= 0:
        raise RunnerError(ExitCode.NO_PLC_PROJECT, "No PLC-project exists in TwinCAT project")
    if not present:
        raise RunnerError(ExitCode.NO_PLC_PROJECT,
                          f"PLC project '{config.plc_project_name}' not found in TwinCAT project")
    return automation


def prepare_project(automation: PlcAutomation, config: RunnerConfig) -> None:
    try:
        if config.task_name:
            if not automation.configure_tasks(config.task_name):
                logger.warning("Task '%s' not found in real-time configuration",
                               config.task_name)
        for compiler_define in config.compiler_defines:
            automation.add_compiler_define(compiler_define)
    except Exception as e:
        logger.debug("Project preparation failure", exc_info=True)
        raise RunnerError(ExitCode.BUILD_ERROR,
                          f"Could not prepare the PLC project for the build: {e}") from e


def build(session: DevelopmentSession) -> BuildDiagnostics:
    try:
        session.clean_solution()
        session.build_solution()
        time.sleep(ERROR_LIST_SETTLE_SECONDS)
        diagnostics = BuildDiagnostics.classify(session.get_error_items())
    except Exception as e:
        logger.debug("Build failure", exc_info=True)
        raise RunnerError(ExitCode.BUILD_ERROR, f"Build of the solution failed: {e}") from e

    for error in diagnostics.errors:
        logger.error("Description: %s", error.description)
        logger.error("ErrorLevel: %s", error.level.name)
        logger.error("Filename: %s", error.file_name)
    logger.info("Build finished with %d error(s) and %d warning(s)",
                diagnostics.error_count, diagnostics.warning_count)

    if diagnostics.error_count:
        raise RunnerError(ExitCode.BUILD_ERROR, "Build errors in project")
    return diagnostics


def log_ams_ports(automation: PlcAutomation) -> None:
    """Log the AMS port of every PLC project.  Debug output only."""
    if not logger.isEnabledFor(logging.DEBUG):
        return
    try:
        ports = automation.ams_ports()
    except Exception as e:
        logger.debug("Could not read AMS ports: %s", e)
        return
    for name, port in ports.items():
        logger.debug("PLC '%s' uses AMS port %d", name, port)


def check_objects(automation: PlcAutomation, config: RunnerConfig) -> None:
    logger.info("No Build errors!")
    logger.info("Checking objects of Project: %s", config.plc_project_name)
    try:
        ok = automation.check_all_objects()
    except Exception as e:
        logger.debug("CheckAllObjects failure", exc_info=True)
        raise RunnerError(ExitCode.CHECK_ALL_OBJECTS_ERROR,
                          f"Checking all objects failed: {e}") from e
    if not ok:
        raise RunnerError(ExitCode.CHECK_ALL_OBJECTS_ERROR,
                          "Error(s) while checking all objects!")
    logger.info("No Errors while checking all objects!")


def export_library(automation: PlcAutomation, config: RunnerConfig) -> None:
    logger.info("Trying to save as library...")
    try:
        automation.save_as_library(config.library_path, config.install_library)
    except Exception as e:
        logger.debug("SaveAsLibrary failure", exc_info=True)
        raise RunnerError(ExitCode.LIBRARY_EXPORT_ERROR,
                          f"Could not save library {config.library_path}: {e}") from e
    logger.info("Saved as library at %s", config.library_path)


# ===================================================================
# Driver
# ===================================================================

def _run_steps(
    config: RunnerConfig,
    session_factory: SessionFactory,
    automation_factory: AutomationFactory,
    message_filter: MessageFilter,
) -> None:
    validate_config(config)
    log_basic_info(config)

    with message_filter:
        tsproj_path = resolve_project_file(config.solution_path)
        tc_version = resolve_twincat_version(tsproj_path)

        session = create_session(config, tc_version, session_factory)
        with _closing(session):
            load_environment(session, tsproj_path)
            load_solution(session)
            automation = find_plc_project(session, config, automation_factory)
            prepare_project(automation, config)
            build(session)
            log_ams_ports(automation)
            check_objects(automation, config)
            export_library(automation, config)


def run(
    config: RunnerConfig,
    session_factory: SessionFactory = VisualStudioInstance,
    automation_factory: AutomationFactory = AutomationInterface,
    message_filter: Optional[MessageFilter] = None,
) -> ExitCode:
    """Run the build-and-export sequence and return its exit code."""
    if message_filter is None:
        message_filter = MessageFilter()

    watchdog = Watchdog(config.timeout_seconds)
    try:
        with watchdog:
            _run_steps(config, session_factory, automation_factory, message_filter)
    except RunnerError as e:
        logger.error("%s", e.message)
        return e.exit_code
    except KeyboardInterrupt:
        if watchdog.fired:
            logger.error("Run stopped after timeout")
            return ExitCode.TIMEOUT
        logger.info("Application interrupted by user")
        return ExitCode.USER_INTERRUPT
    finally:
        # An interrupt landing inside __exit__ can skip the first cancel.
        watchdog.cancel()
        logger.info("Exiting application...")
    return ExitCode.SUCCESS
