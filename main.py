import logging
import os
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from composer import EmptyMessageError, RecipientResolutionError, compose_message, resolve_recipient
from repository import PostNotFoundError, StoreUnavailableError, create_store
from schemas import Post, PostStatus, PostType, UserRole, utcnow
from threads import admin_inbox, query_messages, user_inbox

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

store = create_store()


@asynccontextmanager
async def lifespan(app: FastAPI):
    admin = store.users.ensure_admin()
    logger.info("Registry ready (%s store, administrator %s)", store.store_type, admin.id)
    yield


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable(request: Request, exc: StoreUnavailableError):
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": "Storage unavailable"})


# Schemas for requests
class Login(BaseModel):
    email: str = Field(..., min_length=3)


class CreatePost(BaseModel):
    user_id: str
    user_name: str
    title: str = Field(..., min_length=1, max_length=120)
    description: str = Field(..., min_length=1)
    category: str
    location: str
    date: str
    type: PostType
    image: Optional[str] = None


class UpdateStatus(BaseModel):
    status: PostStatus


class SendMessage(BaseModel):
    post_id: str
    sender_id: str
    sender_name: str
    content: str = Field(..., max_length=4000)
    # Optional; when sent it must match the sender's role
    is_admin: Optional[bool] = None
    # Student of the thread the office has open; ignored for student senders
    recipient_id: Optional[str] = None


@app.get("/")
def read_root():
    return {"message": "Lost & Found API ready"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "store": store.store_type,
        "database": "✅ Configured",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
    }
    if store.store_type == "inmemory":
        response["database"] = "⚠️ In-memory store (data is lost on restart)"
    # Reads fail soft, so an unreachable database shows up as zero counts
    response["counts"] = {
        "users": len(store.users.all()),
        "posts": len(store.posts.all()),
        "messages": len(store.messages.all()),
    }
    return response


# Users
@app.post("/login")
def login(payload: Login):
    if "@" not in payload.email:
        raise HTTPException(status_code=400, detail="A valid email address is required")
    return store.users.login(payload.email)


@app.get("/users/{user_id}/summary")
def user_summary(user_id: str):
    if store.users.get(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")
    return {
        "user_id": user_id,
        "conversation_count": len(user_inbox(store, user_id)),
        "post_count": len(store.posts.visible_to(UserRole.USER, user_id)),
    }


# Posts
@app.post("/posts")
def create_post(payload: CreatePost):
    post = Post(
        id="p_" + uuid.uuid4().hex[:9],
        status=PostStatus.PENDING,
        created_at=utcnow(),
        **payload.model_dump(),
    )
    return store.posts.add(post)


@app.get("/posts")
def list_posts(role: UserRole = UserRole.USER, user_id: Optional[str] = None):
    return store.posts.visible_to(role, user_id)


@app.get("/posts/{post_id}")
def get_post(post_id: str):
    post = store.posts.resolve(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@app.patch("/posts/{post_id}/status")
def update_post_status(post_id: str, payload: UpdateStatus):
    try:
        return store.posts.update_status(post_id, payload.status)
    except PostNotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")


@app.delete("/posts/{post_id}")
def delete_post(post_id: str):
    try:
        store.posts.delete(post_id)
    except PostNotFoundError:
        raise HTTPException(status_code=404, detail="Post not found")
    return {"deleted": post_id}


# Messages
@app.post("/messages")
def send_message(payload: SendMessage):
    sender = store.users.get(payload.sender_id)
    if sender is None:
        raise HTTPException(status_code=404, detail="Sender not found")
    # The role on record decides, not the flag the client sent
    is_admin = sender.role == UserRole.ADMIN
    if payload.is_admin is not None and payload.is_admin != is_admin:
        raise HTTPException(status_code=403, detail="Sender role does not match is_admin")

    post = store.posts.resolve(payload.post_id)
    if post is None:
        raise HTTPException(status_code=404, detail="Post not found")

    try:
        recipient_id = resolve_recipient(post.user_id, is_admin, payload.recipient_id)
        return compose_message(
            store.messages,
            post_id=post.id,
            sender_id=sender.id,
            sender_name=payload.sender_name,
            content=payload.content,
            is_admin=is_admin,
            recipient_id=recipient_id,
        )
    except (EmptyMessageError, RecipientResolutionError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.get("/messages/{post_id}")
def list_messages(post_id: str, participant_id: Optional[str] = None):
    return query_messages(store.messages, post_id, participant_id)


# Inboxes
@app.get("/inbox/admin")
def get_admin_inbox():
    return admin_inbox(store)


@app.get("/inbox/{user_id}")
def get_user_inbox(user_id: str):
    return user_inbox(store, user_id)


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
