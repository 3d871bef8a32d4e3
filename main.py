# main.py
from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kht import auth, chats, contacts, doctors, functions, patients
from kht.database import create_db_and_tables
from kht.logging_setup import setup_logger

setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    yield


app = FastAPI(title="KHT Care API", lifespan=lifespan)

# mobile clients and the edge-function scheduler call from anywhere
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
)

app.include_router(auth.router)
app.include_router(auth.users_router)
app.include_router(doctors.router)
app.include_router(patients.router)
app.include_router(contacts.router)
app.include_router(chats.router)
app.include_router(chats.doctor_router)
app.include_router(chats.patient_router)
app.include_router(functions.router)


@app.get("/health")
def health():
    return {"status": "ok"}
