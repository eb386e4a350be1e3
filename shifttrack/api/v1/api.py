"""
V1 API router aggregator — wires all endpoint modules together.
"""

from fastapi import APIRouter

from shifttrack.api.v1.endpoints import actions, auth, employees, shifts, system

api_router = APIRouter()

# Login, logout, profile
api_router.include_router(auth.router)

# Staff directory
api_router.include_router(employees.router)

# Clock in/out, history, admin corrections
api_router.include_router(shifts.router)

# Named-action dispatcher
api_router.include_router(actions.router)

# Health and status
api_router.include_router(system.router)
