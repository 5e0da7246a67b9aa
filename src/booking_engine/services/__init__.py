"""Engine services: datastore access, gateway adapter and the booking workflows."""
