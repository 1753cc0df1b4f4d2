"""
Serve Tracker Backend — API Routes Package
============================================

Route Inventory:
    - serve_attempts.py:  POST/GET /api/serve-attempts, GET .../cached, .../pending,
                          .../count, GET/PATCH/DELETE .../{id},
                          GET /api/clients/{client_id}/serve-attempts
    - notifications.py:   POST /api/notifications
    - sync.py:            POST /api/sync, GET /api/tasks/{task_id}
    - health.py:          GET  /health

Routes stay thin: parse the request, call a service, shape the response.
"""
