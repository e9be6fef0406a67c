"""
Simple simulator: one weighbridge terminal doing a gross and a tare weigh.
Run (service on localhost:8000):
    python scripts/simulate_terminal.py
"""
import os
import random
import time
import requests

API = os.getenv("API", "http://localhost:8000")

def main():
    farmers = ["Ram Singh", "Anita Devi", "Mohan Patel"]
    body = {
        "farmer_name": random.choice(farmers),
        "vehicle_plate": f"GJ01AB{random.randint(1000, 9999)}",
        "gross_weight": f"{random.uniform(1200, 2500):.2f}",
    }
    r = requests.post(f"{API}/api/weighments/gross", json=body)
    print("gross:", r.status_code, r.text)
    r.raise_for_status()
    txn = r.json()

    pending = requests.get(f"{API}/api/weighments/pending").json()
    print("pending tare:", [p["id"] for p in pending])

    time.sleep(1)  # unloading
    tare = f"{random.uniform(700, 1100):.2f}"
    r = requests.post(f"{API}/api/weighments/{txn['id']}/tare", json={"tare_weight": tare})
    print("tare:", r.status_code, r.text)

    # second tare on the same slip must be refused
    r = requests.post(f"{API}/api/weighments/{txn['id']}/tare", json={"tare_weight": tare})
    print("repeat tare:", r.status_code, r.text)

if __name__ == "__main__":
    main()
