from fastapi import APIRouter
from turcrm.api import auth, registration, documents, sms

router = APIRouter()
router.include_router(auth.router, tags=["Auth"])
router.include_router(registration.router, prefix="/register", tags=["Registration"])
router.include_router(documents.router, prefix="/documents", tags=["Documents"])
router.include_router(sms.router, prefix="/sms", tags=["SigningSms"])
