"""
Stand-in for `npm run watch` in the TypeScript + mocha watcher fixture.

Prints the same output shape as tsc --watch followed by a mocha run,
then polls for the trigger file and prints a rebuild when it appears.
Exits quietly on SIGINT.

Usage: fake_watch.py [--trigger PATH] [--ignore-sigint] [--exit-early]
"""
import argparse
import os
import signal
import sys
import time


def emit(line=""):
    print(line, flush=True)


def first_run():
    emit()
    emit("> module-usage@1.0.0 watch /fixture")
    emit("> mocha-typescript-watch")
    emit()
    emit("[10:00:00 AM] Found 0 errors. Watching for file changes.")
    emit("Run mocha.")
    emit()
    emit()
    emit("  Test1")
    emit("    ok method")
    emit()
    emit()
    emit("  1 passing (5ms)")


def second_run():
    emit()
    emit("[10:00:05 AM] File change detected. Starting incremental compilation...")
    emit("[10:00:06 AM] Found 0 errors. Watching for file changes.")
    emit("Run mocha.")
    emit()
    emit()
    emit("  Test2")
    emit("    1) method2")
    emit()
    emit("  Test1")
    emit("    ok method")
    emit()
    emit()
    emit("  1 passing (6ms)")
    emit("  1 failing")


def main():
    ap = argparse.ArgumentParser()
    ap.add_argument("--trigger", default=os.path.join("test", "new.ts"))
    ap.add_argument("--ignore-sigint", action="store_true")
    ap.add_argument("--exit-early", action="store_true")
    args = ap.parse_args()

    if args.ignore_sigint:
        signal.signal(signal.SIGINT, signal.SIG_IGN)

    try:
        first_run()
        if args.exit_early:
            return 0

        while not os.path.exists(args.trigger):
            time.sleep(0.05)
        second_run()

        while True:
            time.sleep(0.1)
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
