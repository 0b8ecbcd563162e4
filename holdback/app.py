# holdback/app.py - FastAPI backend application

from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from typing import List, Optional, Dict, Any, Union
from datetime import datetime, timezone
import logging

from holdback import __version__
from holdback.auth import check_pin, require_pin
from holdback.categories import CategoryView
from holdback.config import settings
from holdback.database import Database
from holdback.equipment import EquipmentView
from holdback.errors import IntranetError, UnknownColumnError, UnknownTableError
from holdback.intranet import IntranetClient, filter_projects, group_by_status, sorted_grid
from holdback.models import CategoryKind, ModifiedTimeResponse, PinRequest
from holdback.modified_time import ModifiedTimeTracker
from holdback.printing import equipment_report, quoted_projects_report, section_report, sections_report
from holdback.quoted_projects import QuotedProjectsView
from holdback.realtime import ChangeFeed, WebSocketHub

# Setup logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL, logging.INFO))
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Holdback Dashboard API",
    description="Project-management dashboard backend with realtime change notifications",
    version=__version__
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Realtime channel, database and the server-side modified-time tracker
feed = ChangeFeed()
hub = WebSocketHub(feed)
db: Optional[Database] = None
tracker: Optional[ModifiedTimeTracker] = None

# Query parameters that are not column filters
RESERVED_PARAMS = {"order_by", "desc", "limit"}


@app.on_event("startup")
async def startup_event():
    """Initialize database on startup"""
    global db, tracker
    db = Database(settings.DATABASE_URL, feed)
    await db.init()
    hub.start()
    tracker = ModifiedTimeTracker(db)
    await tracker.start()
    logger.info("Database initialized")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    if tracker is not None:
        await tracker.close()
    hub.close()
    await feed.drain()
    if db is not None:
        await db.close()
    logger.info("Database connection closed")


# Root endpoint
@app.get("/")
async def root():
    return {"message": "Holdback dashboard backend is running", "docs": "/docs"}


# Health check endpoint
@app.get("/healthz")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__
    }


# PIN gate
@app.post("/api/pin")
async def verify_pin(body: PinRequest):
    """Validate a PIN and remember it in a cookie"""
    if not check_pin(body.pin):
        raise HTTPException(status_code=401, detail="Incorrect PIN")
    response = JSONResponse({"message": "PIN accepted"})
    response.set_cookie(settings.PIN_COOKIE_NAME, body.pin, httponly=True, samesite="strict")
    return response


# Table CRUD endpoints
@app.get("/api/tables/{table}", dependencies=[Depends(require_pin)])
async def list_rows(table: str, request: Request,
                    order_by: Optional[str] = None, desc: bool = False, limit: Optional[int] = None):
    """Select rows; any other query parameter is an equality filter"""
    filters = {
        k: v for k, v in request.query_params.items() if k not in RESERVED_PARAMS
    }
    try:
        rows = await db.select(
            table, filters,
            order_by=order_by.split(",") if order_by else None,
            descending=desc,
            limit=limit,
        )
        return {"rows": rows}
    except UnknownTableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownColumnError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Invalid filter value: {e}")
    except Exception as e:
        logger.error(f"Get {table} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to retrieve {table}")


@app.post("/api/tables/{table}", dependencies=[Depends(require_pin)])
async def insert_rows(table: str, body: Union[List[Dict[str, Any]], Dict[str, Any]]):
    """Insert one or more rows and echo them back with their ids"""
    try:
        rows = await db.insert(table, body)
        return {"rows": rows}
    except UnknownTableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownColumnError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Insert into {table} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to insert into {table}")


@app.patch("/api/tables/{table}/{row_id}", dependencies=[Depends(require_pin)])
async def update_row(table: str, row_id: int, updates: Dict[str, Any]):
    """Update a row by id"""
    try:
        row = await db.update(table, row_id, updates)
        if row is None:
            raise HTTPException(status_code=404, detail="Record not found")
        return row
    except HTTPException:
        raise
    except UnknownTableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except UnknownColumnError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Update {table} {row_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to update {table}")


@app.delete("/api/tables/{table}/{row_id}", dependencies=[Depends(require_pin)])
async def delete_row(table: str, row_id: int):
    """Delete a row by id"""
    try:
        row = await db.delete(table, row_id)
        if row is None:
            raise HTTPException(status_code=404, detail="Record not found")
        return {"message": "Record deleted successfully", "row": row}
    except HTTPException:
        raise
    except UnknownTableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        logger.error(f"Delete {table} {row_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to delete from {table}")


@app.get("/api/modified-time", response_model=ModifiedTimeResponse, dependencies=[Depends(require_pin)])
async def modified_time():
    """When dashboard data last changed, and in which table"""
    return tracker.state


# Print endpoints
@app.get("/api/print/equipment", response_class=HTMLResponse, dependencies=[Depends(require_pin)])
async def print_equipment():
    view = EquipmentView(db)
    if not await view.load():
        raise HTTPException(status_code=500, detail="Failed to load equipment")
    return equipment_report(view.groups.values())


@app.get("/api/print/quoted-projects", response_class=HTMLResponse, dependencies=[Depends(require_pin)])
async def print_quoted_projects():
    view = QuotedProjectsView(db)
    if not await view.load():
        raise HTTPException(status_code=500, detail="Failed to load quoted projects")
    return quoted_projects_report(view.sorted_projects)


@app.get("/api/print/{kind}", response_class=HTMLResponse, dependencies=[Depends(require_pin)])
async def print_sections(kind: CategoryKind):
    view = CategoryView(db, kind)
    if not await view.load():
        raise HTTPException(status_code=500, detail=f"Failed to load {kind.value} sections")
    return sections_report(f"All {kind.value.title()} Sections", view.sections)


@app.get("/api/print/{kind}/{section_id}", response_class=HTMLResponse, dependencies=[Depends(require_pin)])
async def print_section(kind: CategoryKind, section_id: int):
    view = CategoryView(db, kind)
    if not await view.load():
        raise HTTPException(status_code=500, detail=f"Failed to load {kind.value} sections")
    section = view.section(section_id)
    if section is None:
        raise HTTPException(status_code=404, detail=f"Section with id {section_id} not found")
    return section_report(section)


# Intranet holdback projects
@app.get("/api/holdbacks", dependencies=[Depends(require_pin)])
async def holdback_projects(search: str = Query("", description="Keyword filter"),
                            status: Optional[str] = None, grid: bool = False):
    client = IntranetClient(settings.INTRANET_URL, settings.INTRANET_KEY,
                            timeout=settings.INTRANET_TIMEOUT_SECONDS)
    try:
        projects = await client.fetch_projects()
    except IntranetError as e:
        raise HTTPException(status_code=502, detail=str(e))

    matches = filter_projects(projects, search, status)
    if grid:
        return {"projects": sorted_grid(matches)}
    return {"groups": group_by_status(matches)}


# Realtime changes
@app.websocket("/ws/changes")
async def websocket_changes(websocket: WebSocket, tables: Optional[str] = None, pin: Optional[str] = None):
    """Stream every change notification, optionally narrowed to some tables"""
    if not check_pin(pin or websocket.cookies.get(settings.PIN_COOKIE_NAME)):
        await websocket.close(code=1008)
        return

    client_id = await hub.connect(websocket, tables.split(",") if tables else None)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error for client {client_id}: {e}")
    finally:
        hub.disconnect(client_id)


# Debug endpoints (development only)
if settings.DEBUG:
    @app.get("/api/debug/subscribers")
    async def get_subscribers():
        """Current realtime subscriptions (debug only)"""
        return {
            "subscriptions": feed.subscriber_count(),
            "websockets": len(hub.connections),
        }

    @app.delete("/api/debug/reset")
    async def reset_database():
        """Reset database (debug only)"""
        try:
            await db.reset()
            return {"message": "Database reset successfully"}
        except Exception as e:
            logger.error(f"Reset failed: {e}")
            raise HTTPException(status_code=500, detail="Failed to reset database")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("holdback.app:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
