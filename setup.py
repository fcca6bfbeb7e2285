from setuptools import setup, find_packages

setup(
    name="healthpath-reminders",
    version="0.1.0",
    packages=find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi",
        "uvicorn",
        "sqlalchemy>=2.0",
        "alembic",
        "psycopg2-binary",
        "python-dotenv",
        "pydantic>=2",
        "pydantic-settings",
        "celery",
        "kombu",
        "croniter",
        "tzdata",
        "firebase-admin",
        "prometheus-client",
        "prometheus-fastapi-instrumentator",
    ],
    extras_require={
        "test": [
            "pytest",
            "pytest-asyncio",
            "httpx",
        ],
    },
)
