"""Run the interactive voice visit console client."""

import asyncio

from voicevisit.main import main

if __name__ == "__main__":
    asyncio.run(main())
