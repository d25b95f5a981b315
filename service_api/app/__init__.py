"""
API service package for the project-management backend.

Business routers (auth, workspaces, members, projects, tasks) are mounted
under ``/api`` behind a global response cache:

- app.main: FastAPI app, lifespan, and middleware wiring.
- app.caching: Store connection manager, cache policy, and middleware.
"""
