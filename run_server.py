import os

import uvicorn

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "127.0.0.1"),
        port=int(os.getenv("PORT", "8000")),
        reload=True,
        # Generated assets and the SQLite job file change while jobs run
        reload_excludes=["media/*", "media/jobs/*", "*.db"]
    )
