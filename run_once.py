import sys, os
import asyncio
import logging
import pathlib

# Ensure we are in the correct directory regardless of how this is called
SCRIPT_DIR = str(pathlib.Path(__file__).parent.absolute())
sys.path.insert(0, SCRIPT_DIR)
os.chdir(SCRIPT_DIR)

from dotenv import load_dotenv
load_dotenv()

from executor.automation_engine import AutomationEngine

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
)


async def main():
    print("Starting one-off enrollment sweep...")
    # Suitable for cron: resumes every enrollment whose wait has elapsed, then exits.
    engine = AutomationEngine.from_env()
    try:
        result = await engine.process_pending_enrollments()
    finally:
        await engine.dispose()

    print(f"Finished sweep: {result}")
    return 1 if result.get("error") else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
