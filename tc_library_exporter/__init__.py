"""
TwinCAT Library Exporter - build TwinCAT PLC projects and save them as libraries.

Drives Visual Studio (or the TwinCAT XAE Shell) through EnvDTE and the
TwinCAT automation interface: loads a solution with the right TwinCAT
version, cleans and builds it, checks all objects of a PLC project, and
saves that project as a ``.library`` or ``.compiled-library``.

Usage:
    from tc_library_exporter import RunnerConfig, run

    config = RunnerConfig(
        solution_path=r'C:\\work\\Machine\\Machine.sln',
        plc_project_name='Machine^Machine Project',
        library_path=r'C:\\out\\Machine.compiled-library',
    )
    exit_code = run(config)

    # XML helpers for tree item documents
    from tc_library_exporter import xml_utils
    xml = xml_utils.set_disabled_and_autostart(task_xml, disabled=False, autostart=True)
"""

__version__ = '0.1.0'


def __getattr__(name):
    """Lazy import so the XML helpers load without the COM stack."""
    if name == 'run':
        from .runner import run
        return run
    if name in ('RunnerConfig', 'ExitCode'):
        from . import models
        return getattr(models, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = [
    'run',
    'RunnerConfig',
    'ExitCode',
]
