"""MCP server exposing the interpreter engine as tools over stdio or HTTP."""

from __future__ import annotations

from mcp.server.fastmcp import FastMCP

from shellhost.config import DEFAULT_PORT
from shellhost.errors import EngineError

from .process import ManagedProcess
from .supervisor import InterpreterEngine


def _error(message: str, **extra: object) -> dict:
    return {"status": "error", "error": message, **extra}


def create_server(
    engine: InterpreterEngine | None = None,
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP interpreter engine server."""

    eng = engine or InterpreterEngine()

    mcp = FastMCP(
        name="shellhost",
        instructions=(
            "Drives long-lived command interpreters. Use launch_process or "
            "create_session to get an interpreter, bootstrap_capability once per "
            "process, execute_command to run commands, and terminate_process or "
            "dispose_session when done."
        ),
        host="127.0.0.1",
        port=port,
        stateless_http=True,
    )

    def lookup(pid: int | None, session: str | None) -> ManagedProcess | None:
        if session:
            return eng.get_session(session)
        if pid is not None:
            return eng.find(pid)
        return None

    def not_found(pid: int | None, session: str | None) -> dict:
        target = f"session '{session}'" if session else f"pid {pid}"
        return {"status": "not_found", "error": f"No live interpreter for {target}"}

    # ------------------------------------------------------------------
    # Tool: launch_process
    # ------------------------------------------------------------------
    @mcp.tool()
    async def launch_process() -> dict:
        """Start an ad hoc interpreter process and return its pid."""
        try:
            process = await eng.launch()
        except EngineError as exc:
            return _error(str(exc))
        return {"status": "running", "pid": process.pid, "executable": process.executable}

    # ------------------------------------------------------------------
    # Tool: create_session / get_session / dispose_session
    # ------------------------------------------------------------------
    @mcp.tool()
    async def create_session(session: str) -> dict:
        """Start a persistent interpreter under a session key.

        Any interpreter already registered under the same key is terminated
        first.

        Args:
            session: Caller-chosen session key (e.g. "source-vcenter").
        """
        try:
            process = await eng.create_session(session)
        except (EngineError, ValueError) as exc:
            return _error(str(exc), session=session)
        return {"status": "running", "session": session, "pid": process.pid}

    @mcp.tool()
    async def get_session(session: str) -> dict:
        """Look up the live interpreter for a session key."""
        process = eng.get_session(session)
        if process is None:
            return not_found(None, session)
        return {"session": session, **eng.health(process).to_dict()}

    @mcp.tool()
    async def dispose_session(session: str) -> dict:
        """Terminate the session's interpreter and forget the key."""
        graceful = await eng.dispose_session(session)
        return {"session": session, "status": "disposed", "exited_gracefully": graceful}

    # ------------------------------------------------------------------
    # Tool: bootstrap_capability
    # ------------------------------------------------------------------
    @mcp.tool()
    async def bootstrap_capability(
        pid: int | None = None,
        session: str | None = None,
        bypass: bool = False,
        validate: bool = False,
        force: bool = False,
    ) -> dict:
        """Load and configure the capability modules in an interpreter.

        Args:
            pid: Target process id (ad hoc processes).
            session: Target session key (takes precedence over pid).
            bypass: Skip loading and mark the process configured anyway.
            validate: Also run the validation phase and report module details.
            force: Re-run even if the process is already configured.
        """
        process = lookup(pid, session)
        if process is None:
            return not_found(pid, session)
        result = await eng.bootstrap(process, bypass=bypass, validate=validate, force=force)
        return {"pid": process.pid, **result.to_dict()}

    # ------------------------------------------------------------------
    # Tool: execute_command
    # ------------------------------------------------------------------
    @mcp.tool()
    async def execute_command(
        command: str,
        pid: int | None = None,
        session: str | None = None,
        timeout_seconds: float | None = None,
        terminate_on_timeout: bool = False,
    ) -> dict:
        """Run a command in an interpreter and return its output.

        Args:
            command: Command text, passed to the interpreter verbatim.
            pid: Target process id (ad hoc processes).
            session: Target session key (takes precedence over pid).
            timeout_seconds: Give up waiting after this long. The interpreter
                keeps running unless terminate_on_timeout is set.
            terminate_on_timeout: Terminate the interpreter if the command times out.
        """
        process = lookup(pid, session)
        if process is None:
            return not_found(pid, session)
        try:
            output = await eng.execute(
                process,
                command,
                timeout_seconds,
                terminate_on_timeout=terminate_on_timeout,
            )
        except (EngineError, ValueError) as exc:
            return _error(f"ERROR: {exc}", pid=process.pid)
        return {"status": "ok", "pid": process.pid, "output": output}

    # ------------------------------------------------------------------
    # Tool: terminate_process / process_health / list_processes
    # ------------------------------------------------------------------
    @mcp.tool()
    async def terminate_process(
        pid: int | None = None,
        session: str | None = None,
        grace_seconds: float | None = None,
    ) -> dict:
        """Ask an interpreter to exit, killing its process tree after the grace period."""
        process = lookup(pid, session)
        if process is None:
            return not_found(pid, session)
        graceful = await eng.terminate(process, grace_seconds)
        return {
            "pid": process.pid,
            "status": "terminated",
            "exited_gracefully": graceful,
            "exit_code": process.exit_code,
        }

    @mcp.tool()
    async def process_health(pid: int | None = None, session: str | None = None) -> dict:
        """Health summary for one interpreter."""
        process = lookup(pid, session)
        if process is None:
            return not_found(pid, session)
        return eng.health(process).to_dict()

    @mcp.tool()
    async def list_processes() -> dict:
        """List every tracked interpreter, ad hoc and persistent."""
        processes = eng.list_processes()
        return {"count": len(processes), "processes": processes}

    # ------------------------------------------------------------------
    # Tool: active_process_count / cleanup_all
    # ------------------------------------------------------------------
    @mcp.tool()
    async def active_process_count() -> dict:
        """Number of interpreters currently tracked."""
        return {"count": eng.active_process_count()}

    @mcp.tool()
    async def cleanup_all() -> dict:
        """Force-kill every tracked interpreter."""
        count = await eng.cleanup_all()
        return {"status": "cleaned", "count": count}

    return mcp
