"""FastAPI application for the clinic leave and shift scheduler."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import models  # noqa: F401  registers tables on Base
from .database import Base, engine
from .routers import clinics, combinations, fairness, leave, schedule, staff

# Create tables
Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Clinic Scheduler",
    description="Fairness-aware leave slot allocation and shift auto-assignment",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins in development
    allow_credentials=False,  # Must be False when allow_origins is "*"
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(clinics.router, prefix="/api/clinics", tags=["clinics"])
app.include_router(staff.router, prefix="/api/staff", tags=["staff"])
app.include_router(combinations.router, prefix="/api/combinations", tags=["combinations"])
app.include_router(leave.router, prefix="/api/leave", tags=["leave"])
app.include_router(schedule.router, prefix="/api/schedule", tags=["schedule"])
app.include_router(fairness.router, prefix="/api/fairness", tags=["fairness"])


@app.get("/")
def root():
    return {"message": "Clinic Scheduler API", "docs": "/docs"}
