"""Serve the ledger API: ``python -m hr_ledger`` or the ``hr-ledger`` script."""

import uvicorn

from hr_ledger.config import settings


def main() -> None:
    uvicorn.run(
        "hr_ledger.main:app",
        host=settings.HOST,
        port=settings.PORT,
        workers=settings.WORKERS,
        log_level=settings.LOG_LEVEL.lower(),
        reload=settings.ENVIRONMENT == "development",
    )


if __name__ == "__main__":
    main()
