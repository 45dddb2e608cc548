from __future__ import annotations

from pathlib import Path
import sys
import threading
import time
import unittest

from core.command_runner import (
    CommandError,
    CommandResult,
    RecordingCommandRunner,
    SubprocessCommandRunner,
)


class SubprocessCommandRunnerTests(unittest.TestCase):
    def test_captures_both_streams(self) -> None:
        runner = SubprocessCommandRunner()
        script = "import sys; print('out'); print('err', file=sys.stderr)"
        result = runner.run([sys.executable, "-c", script])
        self.assertEqual(result.returncode, 0)
        self.assertEqual(result.stdout.strip(), "out")
        self.assertEqual(result.stderr.strip(), "err")

    def test_large_output_on_both_pipes_does_not_stall(self) -> None:
        runner = SubprocessCommandRunner()
        script = (
            "import sys\n"
            "for i in range(20000):\n"
            "    sys.stdout.write('o' * 20 + '\\n')\n"
            "    sys.stderr.write('e' * 20 + '\\n')\n"
        )
        result = runner.run([sys.executable, "-c", script])
        self.assertEqual(len(result.stdout.splitlines()), 20000)
        self.assertEqual(len(result.stderr.splitlines()), 20000)

    def test_check_raises_command_error(self) -> None:
        runner = SubprocessCommandRunner()
        with self.assertRaises(CommandError) as ctx:
            runner.run([sys.executable, "-c", "raise SystemExit(4)"])
        self.assertEqual(ctx.exception.result.returncode, 4)

        result = runner.run([sys.executable, "-c", "raise SystemExit(4)"], check=False)
        self.assertEqual(result.returncode, 4)

    def test_environment_is_merged(self) -> None:
        runner = SubprocessCommandRunner()
        script = "import os; print(os.environ['CXX_TEST_VALUE'])"
        result = runner.run([sys.executable, "-c", script], env={"CXX_TEST_VALUE": "x64-windows-static-md"})
        self.assertEqual(result.stdout.strip(), "x64-windows-static-md")

    def test_missing_executable_raises_os_error(self) -> None:
        with self.assertRaises(OSError):
            SubprocessCommandRunner().run(["definitely-not-a-real-tool-cxx"])

    def test_terminate_all_kills_running_processes(self) -> None:
        runner = SubprocessCommandRunner()
        outcome: list[CommandResult] = []
        worker = threading.Thread(
            target=lambda: outcome.append(
                runner.run([sys.executable, "-c", "import time; time.sleep(30)"], check=False)
            )
        )
        started = time.monotonic()
        worker.start()

        deadline = time.monotonic() + 10
        while time.monotonic() < deadline and runner.terminate_all() == 0:
            time.sleep(0.05)
        worker.join(timeout=10)

        self.assertFalse(worker.is_alive())
        self.assertEqual(len(outcome), 1)
        self.assertNotEqual(outcome[0].returncode, 0)
        self.assertLess(time.monotonic() - started, 20)

    def test_process_started_after_terminate_all_is_killed(self) -> None:
        runner = SubprocessCommandRunner()
        self.assertEqual(runner.terminate_all(), 0)
        self.assertTrue(runner.terminated)

        started = time.monotonic()
        result = runner.run([sys.executable, "-c", "import time; time.sleep(30)"], check=False)

        self.assertNotEqual(result.returncode, 0)
        self.assertLess(time.monotonic() - started, 20)


class RecordingCommandRunnerTests(unittest.TestCase):
    def test_records_and_formats_commands(self) -> None:
        runner = RecordingCommandRunner()
        runner.run(["MSBuild.exe", "/p:Configuration=Debug"], cwd=Path("build"), note="build")
        runner.run(["app.exe", "hello world"])

        lines = list(runner.iter_formatted(workspace=Path("root")))

        self.assertEqual(lines[0], f"[dry-run] build (cwd={Path('build')}) MSBuild.exe /p:Configuration=Debug")
        self.assertEqual(lines[1], f"[dry-run] (cwd={Path('root')}) app.exe 'hello world'")

    def test_handler_supplies_results(self) -> None:
        runner = RecordingCommandRunner(handler=lambda record: CommandResult(record.command, 2, "", "boom"))
        result = runner.run(["tool"], check=False)
        self.assertEqual(result.stderr, "boom")
        with self.assertRaises(CommandError):
            runner.run(["tool"])
        self.assertEqual(len(list(runner.iter_commands())), 2)


if __name__ == "__main__":
    unittest.main()
