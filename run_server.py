import uvicorn

from config import HOST, PORT

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=HOST,
        port=PORT,
        reload=True,
        # Exclude per-job scratch space and published videos from the reload watcher
        reload_excludes=["renders/*", "audio/*", "videos/*"]
    )
